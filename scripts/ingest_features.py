from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from stocktake_matcher.config import MatchConfig
from stocktake_matcher.db import InventoryDB
from stocktake_matcher.errors import ProviderUnconfigured
from stocktake_matcher.service import MatchService


def main() -> None:
    parser = argparse.ArgumentParser(description="Backfill product and stock-photo match features.")
    parser.add_argument(
        "--db",
        default=os.getenv("STOCKTAKE_DB_PATH", str(ROOT_DIR / "data" / "stocktake.db")),
        help="Path to the inventory sqlite database",
    )
    parser.add_argument(
        "--only",
        choices=["products", "photos"],
        default=None,
        help="Restrict the backfill to one entity kind",
    )
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db = InventoryDB(Path(os.path.expanduser(args.db)).resolve())
    service = MatchService(db, cfg=MatchConfig.from_env())
    try:
        if args.only in (None, "products"):
            print(f"Products updated: {service.ingest_product_features()}")
        if args.only in (None, "photos"):
            print(f"Stock photos updated: {service.ingest_stock_photo_features()}")
    except ProviderUnconfigured as exc:
        raise SystemExit(str(exc)) from exc


if __name__ == "__main__":
    main()
