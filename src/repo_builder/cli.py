"""repo-builder command line interface."""

from __future__ import annotations

import argparse
import dataclasses
import json
from datetime import datetime
from pathlib import Path

from . import __version__
from .catalog import CatalogLoadError, CatalogLoader
from .config import get_settings
from .git import GitNotFoundError
from .orchestrator import (
    EXIT_FAILURES,
    EXIT_FATAL,
    EXIT_OK,
    BuildOrchestrator,
    OrchestratorError,
    configure_logging,
    install_signal_handlers,
    run_setup_script,
)
from .scheduler import SchedulerFatalError
from .selection import resolve_plan
from .storage import ConfigurationStore, render_summary, summarize_tracker, write_summary
from .storage.tracker import TIMESTAMP_FORMAT


def _parse_branch(value: str) -> tuple[str, str]:
    repository_id, sep, branch = value.partition("=")
    if not sep or not repository_id or not branch:
        raise argparse.ArgumentTypeError("expected REPOSITORY=BRANCH")
    return repository_id, branch


def _parse_timestamp(value: str) -> datetime:
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected '{TIMESTAMP_FORMAT}'") from exc


def _confirm_setup(script: Path) -> bool:
    answer = input(f"Do you want to run '{script}' to ensure all tools are set up? (y/N): ")
    return answer.strip().lower() == "y"


def cmd_build(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings.log_level)

    catalog_path = Path(args.catalog) if args.catalog else settings.catalog_path
    try:
        catalog = CatalogLoader(catalog_path).load_all()
    except CatalogLoadError as exc:
        print(f"Catalog unavailable: {exc}")
        return EXIT_FATAL

    interactive = not args.non_interactive
    setup_script = Path(args.setup_script) if args.setup_script else settings.setup_script
    try:
        if setup_script is not None and (args.setup or (interactive and _confirm_setup(setup_script))):
            run_setup_script(setup_script)
    except OrchestratorError as exc:
        print(str(exc))
        return EXIT_FATAL

    store = ConfigurationStore(settings.config_file)
    record = store.load(known_ids=catalog)
    plan, updated = resolve_plan(
        catalog,
        record,
        default_base=settings.default_base_directory,
        base_directory=args.base_dir,
        repositories=args.repo,
        branches=dict(args.branch or []),
        environment_tag=args.env,
        prompt=input if interactive else None,
    )

    try:
        orchestrator = BuildOrchestrator(settings, config_store=store)
    except GitNotFoundError as exc:
        print(str(exc))
        return EXIT_FATAL

    install_signal_handlers()
    try:
        report = orchestrator.run(
            plan,
            updated,
            max_concurrency=args.jobs or settings.max_jobs,
            load_ceiling=args.load_ceiling if args.load_ceiling is not None else settings.load_ceiling,
        )
    except (OrchestratorError, SchedulerFatalError) as exc:
        print(f"Build run aborted: {exc}")
        return EXIT_FATAL
    return report.exit_code


def cmd_summary(args: argparse.Namespace) -> int:
    now = datetime.now()
    summary = summarize_tracker(Path(args.tracker), args.start or now, args.end or now)
    print(render_summary(summary))
    if args.output:
        write_summary(summary, Path(args.output))
    return EXIT_FAILURES if summary.failed else EXIT_OK


def cmd_config(args: argparse.Namespace) -> int:
    settings = get_settings()
    record = ConfigurationStore(settings.config_file).load()
    print(json.dumps(dataclasses.asdict(record), indent=2))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="repo-builder", description="Prepare and build repositories in parallel")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="cmd")

    p_build = sub.add_parser("build", help="Prepare the selected repositories and build them")
    p_build.add_argument("--catalog", help="Repository catalog YAML (default: REPO_BUILDER_CATALOG)")
    p_build.add_argument("--base-dir", help="Workspace directory, relative to ~ unless absolute")
    p_build.add_argument("--repo", action="append", help="Repository id or number; repeatable; 'all' for every one")
    p_build.add_argument("--branch", action="append", type=_parse_branch, help="REPOSITORY=BRANCH; repeatable")
    p_build.add_argument("--env", help="Environment tag for the repository that takes one")
    p_build.add_argument("--jobs", type=int, help="Maximum parallel builds (default: CPU count)")
    p_build.add_argument("--load-ceiling", type=float, help="Delay new builds while CPU %% is above this")
    p_build.add_argument("--non-interactive", action="store_true", help="Do not prompt; use saved or given choices")
    p_build.add_argument("--setup", action="store_true", help="Run the setup script before building")
    p_build.add_argument("--setup-script", help="Setup script path (default: REPO_BUILDER_SETUP_SCRIPT)")
    p_build.set_defaults(func=cmd_build)

    p_summary = sub.add_parser("summary", help="Summarize an existing tracker file")
    p_summary.add_argument("tracker")
    p_summary.add_argument("--start", type=_parse_timestamp)
    p_summary.add_argument("--end", type=_parse_timestamp)
    p_summary.add_argument("--output", help="Also write the summary CSV here")
    p_summary.set_defaults(func=cmd_summary)

    p_config = sub.add_parser("config", help="Show the saved configuration")
    p_config.set_defaults(func=cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_OK
    if getattr(args, "jobs", None) is not None and args.jobs < 1:
        parser.error("--jobs must be >= 1")
    load_ceiling = getattr(args, "load_ceiling", None)
    if load_ceiling is not None and not 0 < load_ceiling <= 100:
        parser.error("--load-ceiling must be in (0, 100]")
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
