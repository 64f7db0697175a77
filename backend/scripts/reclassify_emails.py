#!/usr/bin/env python3
"""
Classify a user's stored emails with batched LLM calls.

Always submits the user's unclassified emails; emails currently in any bucket
chosen with --bucket-id / --bucket-name are resubmitted too (use this after
changing a bucket's description).

Usage (from backend directory; use the project venv so app deps are available):
  .venv/bin/python scripts/reclassify_emails.py --user-id USER [options]

Options:
  --user-id ID         User whose emails are classified (required)
  --bucket-id ID       Reclassify emails in this bucket (repeatable)
  --bucket-name NAME   Reclassify emails in the bucket with this name (repeatable)
  --batch-size N       Emails per LLM call (default: CLASSIFICATION_BATCH_SIZE)
  --dry-run            Classify but do not write assignments
  --verbose, -v        Print every assignment
"""
import argparse
import logging
import os
import sys

# Ensure backend package is importable when run as script from backend or project root
_script_dir = os.path.dirname(os.path.abspath(__file__))
_backend = os.path.dirname(_script_dir)
if _backend not in sys.path:
    sys.path.insert(0, _backend)

from inbox_buckets.database import SessionLocal, init_db
from inbox_buckets.errors import SetupError
from inbox_buckets.services.batch_orchestrator import ClassificationConfig
from inbox_buckets.services.classification_service import run_classification
from inbox_buckets.services.email_store import EmailStore


def resolve_bucket_ids(store: EmailStore, user_id: str, ids: list[str], names: list[str]) -> set[str]:
    """Bucket ids chosen by id or by name. Unknown names raise SetupError."""
    buckets = store.get_buckets(user_id)
    by_name = {b.name: b.id for b in buckets}
    chosen = set(ids)
    for name in names:
        if name not in by_name:
            raise SetupError(f"No bucket named {name!r} for user {user_id}")
        chosen.add(by_name[name])
    return chosen


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Classify a user's stored emails into buckets using batch LLM calls.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--user-id", required=True, help="User whose emails are classified")
    parser.add_argument("--bucket-id", action="append", default=[], help="Reclassify emails in this bucket")
    parser.add_argument("--bucket-name", action="append", default=[], help="Reclassify emails in the bucket with this name")
    parser.add_argument("--batch-size", type=int, default=None, help="Emails per LLM call")
    parser.add_argument("--dry-run", action="store_true", help="Do not write to DB")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print every assignment")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if args.batch_size is not None and not 1 <= args.batch_size <= 50:
        print("--batch-size must be between 1 and 50", file=sys.stderr)
        return 1
    config = ClassificationConfig.from_settings(batch_size=args.batch_size)

    init_db()
    db = SessionLocal()
    try:
        store = EmailStore(db)
        try:
            chosen = resolve_bucket_ids(store, args.user_id, args.bucket_id, args.bucket_name)
            result = run_classification(
                store,
                args.user_id,
                reclassify_bucket_ids=chosen,
                config=config,
                persist=not args.dry_run,
            )
        except SetupError as e:
            print(f"Cannot classify: {e}", file=sys.stderr)
            return 1

        if result.nothing_to_do:
            print("Nothing to classify.")
            return 0
        if args.verbose:
            names = {b.id: b.name for b in store.get_buckets(args.user_id)}
            for email_id, bucket_id in sorted(result.classifications.items()):
                print(f"  {email_id} -> {names.get(bucket_id, bucket_id)}", flush=True)
        for err in result.errors:
            print(f"  Failed batch ({len(err.ids)} emails): {err.reason}", file=sys.stderr)
        for warning in result.warnings:
            print(f"  Warning: {warning}", file=sys.stderr)
        print(
            f"Done: {len(result.classifications)} classified, {len(result.failed_ids)} failed"
            + (" (dry run, nothing saved)" if args.dry_run else "")
        )
        return 0 if not result.errors else 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
