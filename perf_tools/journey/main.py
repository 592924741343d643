"""
Command-line entry point: run the storefront journey against a base URL and
write per-step traces, metrics and the aggregated report.

    python -m perf_tools.journey.main https://petstore.example/actions/Catalog.action
    journey-perf <base_url> [--headed] [--out DIR]

Exit codes: 0 when every step was attempted (step failures included),
2 when the browser or output directory is unusable, 64 on usage errors.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import urllib.parse
from dataclasses import replace

from .artifacts import ArtifactStore
from .config import JourneyConfig
from .http_client import InfrastructureFailure
from .models import ScenarioReport
from .redaction import redact_url_brief
from .scenario import ScenarioRunner
from .session import open_browser_page

logger = logging.getLogger("perf.journey")

EXIT_OK = 0
EXIT_INFRASTRUCTURE = 2
EXIT_USAGE = 64

__all__ = ["EXIT_INFRASTRUCTURE", "EXIT_OK", "EXIT_USAGE", "build_parser", "main", "run_journey"]


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="journey-perf", description="Trace a scripted storefront journey and report Web Vitals.")
    parser.add_argument("base_url", help="Storefront entry URL (http/https)")
    parser.add_argument("--headed", action="store_true", help="Show the browser window (default: headless)")
    parser.add_argument("--out", metavar="DIR", help="Output directory (default: perf-results/<timestamp>)")
    parser.add_argument("--log-level", metavar="LEVEL", help="Logging level (default: PERF_LOG_LEVEL or INFO)")
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


async def run_journey(base_url: str, config: JourneyConfig) -> ScenarioReport:
    """Launch the browser, walk the journey, always shut the browser down."""
    store = ArtifactStore(config.out_dir)
    handle = await open_browser_page(config)
    try:
        runner = ScenarioRunner(handle.page, config, store)
        return await runner.run(base_url)
    finally:
        await handle.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        parsed = urllib.parse.urlparse(args.base_url)
    except ValueError as exc:
        parser.error(f"base_url is not a valid URL ({exc}): {args.base_url!r}")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        parser.error(f"base_url must be an absolute http(s) URL, got {args.base_url!r}")

    config = JourneyConfig.from_env()
    overrides: dict[str, object] = {}
    if args.headed:
        overrides["headless"] = False
    if args.out:
        overrides["out_dir"] = args.out
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if overrides:
        config = replace(config, **overrides)

    _configure_logging(config.log_level)
    logger.info(
        "journey_start url=%s out=%s headless=%s binary=%s",
        redact_url_brief(args.base_url),
        config.out_dir,
        config.headless,
        config.binary_path,
    )

    try:
        report = asyncio.run(run_journey(args.base_url, config))
    except InfrastructureFailure as exc:
        logger.error("infrastructure_failure action=%s reason=%s", exc.action, exc.reason)
        print(json.dumps(exc.to_dict(), ensure_ascii=False), file=sys.stderr)
        return EXIT_INFRASTRUCTURE
    except KeyboardInterrupt:
        logger.warning("journey_interrupted")
        return 130

    failed = sum(1 for s in report.steps if not s.ok)
    print(f"{len(report.steps)} steps recorded ({failed} failed); results in {config.out_dir}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
