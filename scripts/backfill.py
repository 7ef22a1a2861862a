#!/usr/bin/env python3
"""
Vector Backfill Utility
Computes vectors for stored messages that lack one, optionally purging old
vectors first so they are recomputed.
"""

import argparse
import sys
from datetime import datetime

from recall.core.config import RecallConfig, validate_config
from recall.core.errors import StoreIOError
from recall.core.service import build_service


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Compute missing message vectors")
    parser.add_argument("--db-path", help="SQLite database path (default: RECALL_DB_PATH)")
    parser.add_argument("--batch-size", type=int, help="Messages per batch (default: BACKFILL_BATCH_SIZE)")
    purge = parser.add_mutually_exclusive_group()
    purge.add_argument("--purge-before", type=datetime.fromisoformat,
                       help="Delete vectors computed before this ISO timestamp first")
    purge.add_argument("--purge-all", action="store_true", help="Delete all vectors first")
    return parser.parse_args(argv)


def main(argv=None):
    """Backfill missing vectors in the message store."""
    args = parse_args(argv)

    config = RecallConfig.from_env()
    if args.db_path:
        config.db_path = args.db_path
    if args.batch_size:
        config.backfill_batch_size = args.batch_size

    issues = validate_config(config)
    if issues:
        print(f"ERROR: Invalid configuration: {issues}")
        sys.exit(1)

    try:
        service = build_service(config)
    except StoreIOError as e:
        print(f"ERROR: Message store not available: {e}")
        sys.exit(1)

    try:
        if args.purge_all:
            removed = service.purge_vectors()
            print(f"✓ Purged {removed} vectors")
        elif args.purge_before:
            removed = service.purge_vectors(args.purge_before)
            print(f"✓ Purged {removed} vectors computed before {args.purge_before.isoformat()}")

        print("Starting vector backfill...")
        report = service.backfill(config.backfill_batch_size)
    except StoreIOError as e:
        print(f"ERROR: Backfill aborted: {e}")
        sys.exit(1)
    finally:
        service.close()

    print(f"✓ Scanned {report.scanned} messages without vectors in {report.batches} batches")
    print(f"✓ Wrote {report.written} vectors ({report.empty} without known tokens)")
    if report.skipped:
        print(f"Skipped {report.skipped} messages already vectorized by another run")
    if report.failed:
        print(f"WARNING: {len(report.failed)} messages failed: {', '.join(report.failed[:10])}")
        sys.exit(2)

    print("Backfill complete.")


if __name__ == "__main__":
    main()
