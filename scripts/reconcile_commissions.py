from __future__ import annotations

import argparse
import logging
import sys
from decimal import Decimal

from app.db import SessionLocal, settings
from app.services.commissions import bulk_reconcile

logger = logging.getLogger("scripts.reconcile_commissions")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill missing appointment commissions.")
    parser.add_argument("--batch-size", type=int, default=settings.reconcile_batch_size)
    parser.add_argument("--max-batches", type=int, default=0, help="0 runs until nothing is left")
    return parser.parse_args(argv)


def run(batch_size: int, max_batches: int = 0) -> tuple[int, Decimal]:
    processed = 0
    total = Decimal("0")
    batches = 0
    db = SessionLocal()
    try:
        while True:
            summary = bulk_reconcile(db, batch_size)
            batches += 1
            processed += summary["processed_count"]
            total += summary["total_amount"]
            logger.info("batch=%s processed=%s amount=%s", batches, summary["processed_count"], summary["total_amount"])
            if summary["processed_count"] == 0:
                break
            if max_batches and batches >= max_batches:
                break
    finally:
        db.close()
    return processed, total


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args.batch_size < 1:
        raise SystemExit("--batch-size must be at least 1")
    processed, total = run(args.batch_size, args.max_batches)
    print(f"Reconciled {processed} commissions totalling INR {total:.2f}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
