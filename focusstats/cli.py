#!/usr/bin/env python3
"""
Operator commands for the focus analytics store.

Usage:
    python -m focusstats.cli retention                 # apply configured horizons
    python -m focusstats.cli retention --before 2024-01-01
    python -m focusstats.cli refresh daily 2024-01-01
    python -m focusstats.cli rebuild --from 2024-01-01 --to 2024-01-31
    python -m focusstats.cli stats weekly 2024-W01
    python -m focusstats.cli compare monthly
    python -m focusstats.cli serve --port 55556
"""

import argparse
import logging
import sys

from .config import ConfigManager
from .errors import FocusStatsError
from .models import format_duration
from .periods import PERIOD_KINDS
from .service import FocusService

logger = logging.getLogger(__name__)


def print_stats(kind: str, key: str, stats) -> None:
    print(f"=== {kind.capitalize()} {key} ===")
    if stats is None:
        print(f"Focus time: {format_duration(None)}")
        return
    print(f"Sessions: {stats.total_sessions} "
          f"({stats.completed_sessions} completed, {stats.interrupted_sessions} interrupted)")
    print(f"Focus time: {format_duration(stats.total_focus_time)}")
    print(f"Average focus score: {stats.avg_focus_score}")
    print(f"Completion rate: {stats.completion_rate:.1f}%")
    print(f"Whitelisted time: {format_duration(stats.total_whitelisted_time)}")
    if stats.time_saved_percentage is not None:
        print(f"Mobile usage: {format_duration(stats.total_mobile_usage)} "
              f"({stats.time_saved_percentage:.1f}% spent focused)")


def cmd_retention(service: FocusService, args) -> int:
    if args.window is not None:
        removed = service.retention.enforce_mobile_usage_window(args.window)
        print(f"Mobile usage dates removed: {removed}")
        return 0

    if args.before:
        report = service.retention.purge_before(args.before)
    else:
        report = service.run_retention()
    for table, count in report.to_dict().items():
        print(f"{table}: {count}")
    return 0


def cmd_refresh(service: FocusService, args) -> int:
    stats = service.aggregator.refresh(args.kind, args.key)
    print_stats(args.kind, args.key, stats)
    return 0


def cmd_rebuild(service: FocusService, args) -> int:
    count = service.aggregator.rebuild_range(args.start, args.end)
    print(f"Rebuilt {count} rollups")
    return 0


def cmd_stats(service: FocusService, args) -> int:
    if args.live:
        stats = service.aggregator.summarize(args.kind, args.key)
    else:
        stats = service.storage.get_stats(args.kind, args.key)
    print_stats(args.kind, args.key, stats)
    return 0


def cmd_compare(service: FocusService, args) -> int:
    comparison = service.comparison.compare(args.kind, args.today)
    print_stats(args.kind, comparison.current_key, comparison.current)
    print_stats(args.kind, comparison.previous_key, comparison.previous)
    if comparison.focus_time_delta is not None:
        sign = "+" if comparison.focus_time_delta >= 0 else "-"
        print(f"Change: {sign}{format_duration(abs(comparison.focus_time_delta))}"
              + (f" ({comparison.percent_change:+.1f}%)" if comparison.percent_change is not None else ""))
    return 0


def cmd_serve(service: FocusService, args) -> int:
    from web.app import app, set_service

    web_config = service.config.web
    host = args.host or web_config.host
    port = args.port or web_config.port
    set_service(service)
    service.start()
    try:
        logger.info(f"Starting web server on http://{host}:{port}")
        app.run(host=host, port=port, debug=False, use_reloader=False)
    finally:
        service.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Focus session analytics")
    parser.add_argument("--config", help="Path to config.yaml (default: ~/.config/focusstats/config.yaml)")
    parser.add_argument("--db", help="SQLite database path (overrides storage config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    retention = subparsers.add_parser("retention", help="Delete expired data")
    retention.add_argument("--before", help="Purge everything older than this date/time")
    retention.add_argument("--window", type=int,
                           help="Only trim mobile usage to this many most recent dates")
    retention.set_defaults(func=cmd_retention)

    refresh = subparsers.add_parser("refresh", help="Recompute and cache one rollup")
    refresh.add_argument("kind", choices=PERIOD_KINDS)
    refresh.add_argument("key", help="YYYY-MM-DD, YYYY-Www or YYYY-MM")
    refresh.set_defaults(func=cmd_refresh)

    rebuild = subparsers.add_parser("rebuild", help="Recompute every rollup in a date range")
    rebuild.add_argument("--from", dest="start", required=True)
    rebuild.add_argument("--to", dest="end", required=True)
    rebuild.set_defaults(func=cmd_rebuild)

    stats = subparsers.add_parser("stats", help="Show a cached rollup")
    stats.add_argument("kind", choices=PERIOD_KINDS)
    stats.add_argument("key")
    stats.add_argument("--live", action="store_true",
                       help="Compute from sessions instead of reading the cache")
    stats.set_defaults(func=cmd_stats)

    compare = subparsers.add_parser("compare", help="Compare with the previous period")
    compare.add_argument("kind", choices=PERIOD_KINDS)
    compare.add_argument("--today", help="Reference day (default: today)")
    compare.set_defaults(func=cmd_compare)

    serve = subparsers.add_parser("serve", help="Run the JSON API")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = ConfigManager(args.config).config
    service = FocusService(config, db_path=args.db)
    try:
        return args.func(service, args)
    except FocusStatsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
