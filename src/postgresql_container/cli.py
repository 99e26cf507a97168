# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Build and test the PostgreSQL container image."""

from __future__ import annotations

import argparse
import signal
import sys
from pathlib import Path
from typing import List, Optional

from . import reporting
from .assertions import AssertionFailure
from .image import DEFAULT_IMAGE, build_image, dockerfile_drift, render_dockerfile
from .runtime import ContainerError, ContainerRuntime
from .scenarios import harness, run_all, select_scenarios
from .settings import CLIENTS, RUNTIMES, HarnessSettings, settings_from_env

ROOT = Path(__file__).resolve().parents[2]


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pg-container-test", description=__doc__)
    parser.add_argument("--env-file", type=Path, help="KEY=value file read before the process environment")
    parser.add_argument("--image", help="Image under test (default: $IMAGE_NAME)")
    parser.add_argument("--version", help="Expected PostgreSQL version, e.g. 9.5 (default: $VERSION)")
    parser.add_argument("--runtime", choices=RUNTIMES, help="Container runtime CLI (default: docker)")
    parser.add_argument("--client", choices=CLIENTS, help="SQL client used for checks (default: psql)")
    sub = parser.add_subparsers(dest="command", required=True)

    dockerfile = sub.add_parser("dockerfile", help="Render the image Dockerfile")
    dockerfile.add_argument("--output", type=Path, help="Write to this path instead of stdout")
    dockerfile.add_argument(
        "--check", type=Path, metavar="PATH", help="Exit non-zero if PATH differs from the rendered Dockerfile"
    )

    build = sub.add_parser("build", help="Build the image")
    build.add_argument("--context", type=Path, default=ROOT, help="Build context directory")

    run = sub.add_parser("run", help="Run the container test suite")
    run.add_argument("--scenario", action="append", dest="scenarios", help="Run only this scenario (repeatable)")
    run.add_argument("--skip-creation-tests", action="store_true")
    run.add_argument("--skip-change-password", action="store_true")
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> HarnessSettings:
    return settings_from_env(env_file=args.env_file).override(
        image_name=args.image,
        version=args.version,
        runtime=args.runtime,
        client=args.client,
    )


def _terminate(signum, _frame):
    raise SystemExit(128 + signum)


def command_dockerfile(args: argparse.Namespace) -> int:
    if args.check is not None:
        if dockerfile_drift(args.check, DEFAULT_IMAGE):
            reporting.error(f"{args.check} is out of date; re-render it with `pg-container-test dockerfile --output`")
            return 1
        reporting.info(f"{args.check} matches the image definition")
        return 0
    text = render_dockerfile(DEFAULT_IMAGE)
    if args.output is not None:
        args.output.write_text(text)
        reporting.info(f"Wrote {args.output}")
    else:
        sys.stdout.write(text)
    return 0


def command_build(args: argparse.Namespace, settings: HarnessSettings) -> int:
    runtime = ContainerRuntime(settings.runtime)
    runtime.ensure_available()
    build_image(runtime, settings.require_image(), args.context, DEFAULT_IMAGE)
    return 0


def command_run(args: argparse.Namespace, settings: HarnessSettings) -> int:
    scenarios = select_scenarios(args.scenarios)
    signal.signal(signal.SIGTERM, _terminate)
    with harness(settings) as ctx:
        run_all(
            ctx,
            scenarios,
            creation_tests=not args.skip_creation_tests,
            change_password=not args.skip_change_password,
        )
    reporting.info("All tests passed.")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args.command == "dockerfile":
        return command_dockerfile(args)
    try:
        settings = load_settings(args)
        if args.command == "build":
            return command_build(args, settings)
        return command_run(args, settings)
    except ValueError as exc:
        reporting.error(str(exc))
        return 2
    except (AssertionFailure, RuntimeError) as exc:
        reporting.error(f"FAILED: {exc}")
        return 1


if __name__ == "__main__":  # pragma: no cover - exercised via callers
    sys.exit(main())
