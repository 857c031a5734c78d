"""CLI job to index restaurants for a location and persist them."""

import argparse
import json
import logging
import sys
from typing import Optional, Sequence

from grubstars.core.bootstrap import build_orchestrator, prepare_database
from grubstars.core.config import get_settings
from grubstars.core.errors import ConfigurationError
from grubstars.core.models import BusinessRecord, Progress
from grubstars.core.rate_tracker import RateTracker

logger = logging.getLogger(__name__)


def log_progress(source: str, business: BusinessRecord, progress: Progress) -> None:
    logger.info(
        "[%s] %5.1f%% (%d/%d) %s", source, progress.percent, progress.current, progress.total, business.name
    )


def run_index_job(*, location: str, category: Optional[str], limit: int) -> dict:
    location = (location or "").strip()
    if not location:
        raise ValueError("location must not be empty")
    if limit <= 0:
        raise ValueError("limit must be positive")

    settings = get_settings()
    prepare_database(settings)
    orchestrator = build_orchestrator(settings, progress_callback=log_progress)
    stats = orchestrator.index(location, categories=category, limit=limit)
    return stats.as_dict()


def run_reindex_job(*, restaurant_id: int) -> dict:
    settings = get_settings()
    prepare_database(settings)
    return build_orchestrator(settings).reindex_restaurant(restaurant_id)


def run_usage_report() -> dict:
    prepare_database(get_settings())
    return RateTracker().all_counts()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Index restaurants from review directories")
    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Index restaurants for a location")
    index_parser.add_argument("--location", required=True, help="Location to index, e.g. 'barrie, ontario'")
    index_parser.add_argument("--category", help="Optional category filter, e.g. 'bakery'")
    index_parser.add_argument(
        "--limit",
        type=int,
        default=get_settings().default_limit,
        help="Maximum businesses to process per directory",
    )

    reindex_parser = subparsers.add_parser("reindex", help="Refresh one restaurant from its linked directories")
    reindex_parser.add_argument("restaurant_id", type=int)

    subparsers.add_parser("usage", help="Show monthly request counts per directory")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        if args.command == "index":
            result = run_index_job(location=args.location, category=args.category, limit=args.limit)
        elif args.command == "reindex":
            result = run_reindex_job(restaurant_id=args.restaurant_id)
        else:
            result = run_usage_report()
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except Exception as exc:  # noqa: BLE001
        logger.error("%s failed: %s", args.command, exc, exc_info=True)
        raise SystemExit(1) from exc

    json.dump(result, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


if __name__ == "__main__":
    main()
