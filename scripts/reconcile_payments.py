"""Stamp payment ids onto fortunes whose stamp write was lost."""

import argparse

from cupfortune.common.config import settings
from cupfortune.common.db import build_engine, make_session_factory
from cupfortune.common.logging import configure_logging
from cupfortune.services.records.store import SqlRecordStore


def main() -> None:
    """CLI entrypoint for payment stamp reconciliation."""

    parser = argparse.ArgumentParser(description="Reconcile payments missing from their fortune record.")
    parser.add_argument("--dsn", default=settings.postgres_dsn)
    parser.add_argument("--limit", type=int, default=500)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    configure_logging()
    store = SqlRecordStore(make_session_factory(build_engine(args.dsn)))
    if args.dry_run:
        pending = store.list_unstamped_payments(limit=args.limit)
        for payment in pending:
            print(f"would stamp fortune={payment.fortune_id} payment={payment.id}")
        print(f"found {len(pending)} payment(s)")
        return
    stamped = store.reconcile_payment_stamps(limit=args.limit)
    print(f"stamped {len(stamped)} payment(s)")


if __name__ == "__main__":
    main()
