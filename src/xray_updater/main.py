"""Command-line entry point for the Xray updater."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from xray_updater import __version__
from xray_updater.config import Settings, get_settings
from xray_updater.logging import get_logger, setup_logging
from xray_updater.models import UpdateResult, UpdateState
from xray_updater.orchestrator import UpdateOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xray-updater",
        description="Update the local Xray binary to the latest GitHub release",
    )
    parser.add_argument("--binary", help="Path of the live xray binary")
    parser.add_argument("--arch", help="Override the detected architecture (uname -m form)")
    parser.add_argument("--log-file", help="Log file to append to")
    parser.add_argument("--proxy", help="HTTP proxy for GitHub requests")
    parser.add_argument(
        "--no-proxy-probe",
        action="store_true",
        help="Do not probe direct connectivity or fall back to the local proxy",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only report whether an update is available",
    )
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Return ``settings`` with command-line overrides applied."""
    overrides: dict[str, object] = {}
    if args.binary:
        overrides["binary_path"] = args.binary
    if args.log_file:
        overrides["log_file"] = args.log_file
    if args.proxy:
        overrides["proxy_url"] = args.proxy
    if args.no_proxy_probe:
        overrides["probe_proxy"] = False
    if not overrides:
        return settings
    return settings.model_copy(update=overrides)


def _summary(result: UpdateResult) -> str:
    if result.state is UpdateState.UP_TO_DATE:
        return f"Xray {result.current_version} is already the latest version"
    if result.state is UpdateState.UPDATE_AVAILABLE:
        return f"Update available: {result.current_version} -> {result.latest_version}"
    if result.state is UpdateState.UPDATED:
        line = f"Xray updated from {result.current_version} to {result.latest_version}"
        if result.service_degraded:
            line += f" but the service was not confirmed running: {result.service_error}"
        return line
    step = result.failed_step.value if result.failed_step else "unknown"
    return f"Update failed at {step} ({result.error_kind}): {result.error}"


async def main(argv: list[str] | None = None) -> int:
    """Run one update and return the process exit code."""
    args = build_parser().parse_args(argv)
    settings = apply_overrides(get_settings(), args)

    setup_logging(settings)
    log = get_logger("xray_updater.main")
    log.info("xray_updater_starting", version=__version__, check_only=args.check)

    orchestrator = UpdateOrchestrator.from_settings(settings, architecture=args.arch)
    result = await orchestrator.run(check_only=args.check)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        stream = sys.stdout if result.succeeded else sys.stderr
        print(_summary(result), file=stream)
    return result.exit_code


def run() -> None:
    """Run the application."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
