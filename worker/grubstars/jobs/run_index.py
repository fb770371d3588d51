"""CLI job to index an area (or refresh one restaurant) into the catalog."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from grubstars.core.config import get_settings
from grubstars.core.db import init_pool, init_schema
from grubstars.jobs.indexer import NoAdaptersConfigured, build_indexer

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Index restaurants from every configured provider")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--location", dest="location", help='Area to index, e.g. "barrie, ontario"')
    target.add_argument("--reindex", dest="reindex", type=int, metavar="ID", help="Refresh one restaurant by id")
    target.add_argument("--init-db", dest="init_db", action="store_true", help="Create the catalog tables and exit")
    parser.add_argument("--category", dest="category", help="Optional category filter, e.g. bakery")
    parser.add_argument(
        "--limit",
        dest="limit",
        type=int,
        default=get_settings().index_limit,
        help="Maximum listings to process across all providers",
    )
    return parser


def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.limit is not None and args.limit <= 0:
        logger.error("--limit must be positive")
        return 2

    init_pool()
    if args.init_db:
        init_schema()
        return 0

    indexer = build_indexer()
    try:
        if args.reindex is not None:
            result = indexer.reindex(args.reindex)
        else:
            result = indexer.index_area(args.location, category=args.category, limit=args.limit)
    except NoAdaptersConfigured as exc:
        logger.error("%s", exc)
        return 2

    print(json.dumps(result, indent=2, default=str))
    return 0


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    try:
        code = run()
    except Exception as exc:  # noqa: BLE001
        logger.exception("Indexing run failed: %s", exc)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
