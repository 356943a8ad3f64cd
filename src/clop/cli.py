"""
Command line entry point for the optimiser.

Usage:
    clop optimise photo.png clip.mov          # Optimise files, wait for results
    clop optimise --aggressive shot.jpg       # Lossier settings
    clop optimise --downscale 0.5 shot.png    # Halve the dimensions
    clop watch                                # Watch CLOP_IMAGE_DIRS / CLOP_VIDEO_DIRS
    clop serve --port 8000                    # REST API
    clop tools                                # Show codec binaries
    clop clean-workdir                        # Delete backups and scratch files
"""

import argparse
import dataclasses
import logging
import sys
import time
from typing import List, Optional

from clop.config.settings import Settings, get_settings
from clop.jobs import InvalidSourceError, JobManager, JobState, OptimisationOptions
from clop.optimisation import BinaryManager, OptimisationEngine
from clop.utils.logging_config import get_logger, setup_logging
from clop.utils.paths import clean_workdir

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="clop",
        description="Image and video optimiser",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    optimise = subparsers.add_parser("optimise", help="Optimise files in place")
    optimise.add_argument("files", nargs="+", help="Files to optimise")
    optimise.add_argument(
        "--aggressive", "-a",
        action="store_true",
        default=None,
        help="Use lossier settings (default: per-format setting)"
    )
    optimise.add_argument(
        "--downscale", "-d",
        type=float,
        default=1.0,
        help="Scale factor for both dimensions, in (0, 1]"
    )
    optimise.add_argument(
        "--jobs", "-j",
        type=int,
        help="Maximum concurrent jobs (default: CLOP_MAX_CONCURRENT_JOBS)"
    )

    subparsers.add_parser("watch", help="Optimise new files in the watched folders")

    serve = subparsers.add_parser("serve", help="Run the REST API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve.add_argument("--port", type=int, default=8000, help="Port")

    subparsers.add_parser("tools", help="Show codec binaries")
    subparsers.add_parser("clean-workdir", help="Delete backups and scratch files")

    return parser.parse_args(argv)


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def run_optimise(args: argparse.Namespace, settings: Settings) -> int:
    """Optimise the given files and print one line per job. Returns exit code."""
    try:
        if args.jobs is not None:
            settings = dataclasses.replace(settings, max_concurrent_jobs=args.jobs)
            settings.validate()
        options = OptimisationOptions(aggressive=args.aggressive, downscale_factor=args.downscale)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    engine = OptimisationEngine(settings)
    exit_code = 0

    with JobManager(engine, settings) as manager:
        job_ids = []
        for path in args.files:
            try:
                job_ids.append(manager.submit(path, options))
            except InvalidSourceError as e:
                print(f"✗ {e}", file=sys.stderr)
                exit_code = 1

        try:
            manager.wait_all()
        except KeyboardInterrupt:
            print("\nCancelling...", file=sys.stderr)
            for job_id in job_ids:
                manager.cancel(job_id)
            manager.wait_all()

        for job_id in job_ids:
            record = manager.get(job_id)
            name = record.source.path.name
            if record.state == JobState.SUCCEEDED:
                result = record.result
                if result.improved:
                    percent = 100 * result.saved_bytes / max(result.original_size, 1)
                    print(
                        f"✓ {name}: {_format_size(result.original_size)} -> "
                        f"{_format_size(result.optimised_size)} (-{percent:.0f}%)"
                    )
                else:
                    print(f"✓ {name}: already optimal")
            elif record.state == JobState.FAILED:
                print(f"✗ {name}: {record.error}", file=sys.stderr)
                exit_code = 1
            else:
                print(f"- {name}: {record.state.value}", file=sys.stderr)
                exit_code = exit_code or 130

    return exit_code


def run_watch(settings: Settings) -> int:
    """Watch the configured folders until interrupted."""
    from clop.server import build_services

    manager, _, watcher = build_services(settings)
    if watcher is None:
        print("No folders configured. Set CLOP_IMAGE_DIRS and/or CLOP_VIDEO_DIRS.", file=sys.stderr)
        manager.shutdown()
        return 2

    watcher.start()
    print("Watching for new files. Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        watcher.stop()
        manager.shutdown()
    return 0


def run_serve(args: argparse.Namespace, settings: Settings) -> int:
    """Run the REST API with uvicorn."""
    import uvicorn

    from clop.server import build_services, create_app

    manager, binaries, watcher = build_services(settings)
    app = create_app(manager, binaries=binaries, watcher=watcher)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def run_tools(settings: Settings) -> int:
    """Print where each codec binary was found."""
    missing = False
    for name, path in BinaryManager(settings.bin_dir).available().items():
        if path is None:
            missing = True
            print(f"✗ {name}: not found")
        else:
            print(f"✓ {name}: {path}")
    return 1 if missing else 0


def run_clean_workdir(settings: Settings) -> int:
    """Remove and recreate the workdir layout."""
    try:
        clean_workdir(settings.workdir)
    except OSError as e:
        print(f"Failed to clean workdir: {e}", file=sys.stderr)
        return 1
    print(f"Workdir cleaned: {settings.workdir}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the optimiser CLI."""
    args = parse_args(argv)

    settings = get_settings()
    setup_logging(
        log_file=settings.log_file,
        level=logging.DEBUG if args.verbose else logging.INFO,
        workdir=settings.workdir,
    )

    try:
        settings.validate()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    if args.command == "optimise":
        return run_optimise(args, settings)
    if args.command == "watch":
        return run_watch(settings)
    if args.command == "serve":
        return run_serve(args, settings)
    if args.command == "tools":
        return run_tools(settings)
    if args.command == "clean-workdir":
        return run_clean_workdir(settings)
    return 2


if __name__ == "__main__":
    sys.exit(main())
