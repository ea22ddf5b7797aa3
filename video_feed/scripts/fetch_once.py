from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from video_feed.config import ingestion_config_error
from video_feed.dependencies import build_ingestion_scheduler, get_settings
from video_feed.logging_config import configure_application_logging


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a single YouTube ingestion cycle against the configured database.",
    )
    parser.add_argument(
        "--query",
        default=None,
        help="Override SEARCH_QUERY for this run.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    if args.query is not None:
        query = args.query.strip()
        if not query:
            print("--query must not be blank.", file=sys.stderr)
            return 2
        settings = settings.model_copy(update={"search_query": query})
    configure_application_logging(settings)

    config_error = ingestion_config_error(settings)
    if config_error is not None:
        print(str(config_error), file=sys.stderr)
        return 2

    summary = build_ingestion_scheduler(settings).run_cycle()
    print(
        f"outcome={summary.outcome} fetched={summary.fetched} inserted={summary.inserted} "
        f"updated={summary.updated} failed={summary.failed}"
    )
    return 0 if summary.outcome in {"ok", "partial"} else 1


if __name__ == "__main__":
    raise SystemExit(main())
