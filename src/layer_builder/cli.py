"""
Build a Chromium Lambda layer inside a Lambda-like container.

Usage:
    build-layer                                   # full build into /out
    build-layer --profile amazonlinux2023 --out ./out
    build-layer --skip-provision --out ./out      # closure only, browser already staged
    build-layer --report ldd.txt --out ./out      # closure from a saved ldd report
    build-layer --zip ./layer.zip --publish --layer-name chromium
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from observability.logging import setup_logfire

from .builder import EXIT_OK, LayerBuilder
from .config import PROFILES, BuildConfig


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="build-layer",
        description="Provision Playwright Chromium and copy its shared libraries "
        "into a Lambda layer tree.",
    )
    parser.add_argument(
        "--profile",
        choices=sorted(PROFILES),
        help="Base image profile (env LAYER_BUILD_PROFILE)",
    )
    parser.add_argument("--workspace", type=Path, help="Directory with requirements.txt/wheelhouse")
    parser.add_argument("--out", dest="out_dir", type=Path, help="Layer output directory")
    parser.add_argument("--python-version", help="Required interpreter version, e.g. 3.12")
    parser.add_argument(
        "--browsers-path",
        type=Path,
        help="Browser download directory (env PLAYWRIGHT_BROWSERS_PATH)",
    )
    parser.add_argument(
        "--search-path",
        action="append",
        metavar="DIR",
        help="Library search directory, highest priority first; repeatable",
    )
    parser.add_argument(
        "--step-timeout",
        type=float,
        help="Seconds allowed per external command",
    )
    parser.add_argument(
        "--with-deps",
        action="store_true",
        default=None,
        help="Let Playwright install system dependencies too",
    )
    parser.add_argument(
        "--skip-provision",
        action="store_true",
        help="Skip package/browser installation; only build the closure",
    )
    parser.add_argument(
        "--report",
        type=Path,
        help="Build the closure from a saved ldd report and exit",
    )
    parser.add_argument("--zip", dest="zip_path", type=Path, help="Write the layer zip here")
    parser.add_argument("--publish", action="store_true", help="Publish the zip as a layer version")
    parser.add_argument("--layer-name", help="Layer name (env LAYER_NAME)")
    parser.add_argument("--layer-bucket", help="S3 bucket for the zip (env LAYER_BUCKET_NAME)")
    parser.add_argument("--verbose", action="store_true", help="Console log output")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = BuildConfig.from_env(
            profile=args.profile,
            workspace=args.workspace,
            out_dir=args.out_dir,
            python_version=args.python_version,
            browsers_path=args.browsers_path,
            search_path=args.search_path,
            step_timeout=args.step_timeout,
            with_deps=args.with_deps,
            layer_name=args.layer_name,
            layer_bucket=args.layer_bucket,
        )
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    config.out_dir.mkdir(parents=True, exist_ok=True)
    setup_logfire(enable_console_output=args.verbose, build_log=str(config.log_path))

    builder = LayerBuilder(config)

    if args.report is not None:
        if not args.report.is_file():
            print(f"Report not found: {args.report}", file=sys.stderr)
            return 2
        builder.build_closure(args.report.read_text(encoding="utf-8", errors="replace"))
        return EXIT_OK

    if args.publish and args.zip_path is None:
        args.zip_path = config.out_dir.parent / f"{config.layer_name or 'chromium-layer'}.zip"

    outcome = builder.run(
        provision=not args.skip_provision,
        zip_path=args.zip_path,
        publish=args.publish,
    )
    return outcome.exit_code
