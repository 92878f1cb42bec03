#!/usr/bin/env python3
"""
Copy payments/accounts between storage backends (offline batch job).
Run from the project root: python -m scripts.migrate_payments <command> --from redis --to sql

Commands:
  payments   copy all payments (existing target rows are skipped)
  accounts   copy all accounts
  verify     compare a random sample of payments and accounts with the target
  stats      record counts in both backends
"""
import argparse
import sys

from app.core.logging import configure_logging
from app.db.session import SessionLocal
from app.migration.copier import AccountCopier, MigrationProgress, PaymentCopier
from app.storage.factory import StoreFactory


def _print_progress(title: str, progress: MigrationProgress) -> None:
    print(f"\n=== {title} ===")
    print(f"Total:    {progress.total}")
    print(f"Migrated: {progress.migrated}")
    print(f"Skipped:  {progress.skipped}")
    print(f"Failed:   {progress.failed}")
    for i, error in enumerate(progress.errors, 1):
        print(f"  {i}. {error}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="migrate_payments", description=__doc__,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("command", choices=["payments", "accounts", "verify", "stats"])
    parser.add_argument("--from", dest="source", choices=StoreFactory.BACKENDS, default="redis")
    parser.add_argument("--to", dest="target", choices=StoreFactory.BACKENDS, default="sql")
    parser.add_argument("--batch-size", type=int, default=100)
    parser.add_argument("--sample", type=int, default=50)
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--no-skip-existing", dest="skip_existing", action="store_false")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.source == args.target:
        print("--from and --to must be different backends")
        return 2

    configure_logging()
    db = SessionLocal()
    try:
        source = StoreFactory.create(args.source, db=db)
        target = StoreFactory.create(args.target, db=db)
        payments = PaymentCopier(source.payments, target.payments)
        accounts = AccountCopier(source.accounts, target.accounts)

        if args.command == "payments":
            progress = payments.copy(args.batch_size, args.skip_existing, args.dry_run)
            _print_progress(f"Payments {args.source} -> {args.target}", progress)
            return 1 if progress.failed else 0
        if args.command == "accounts":
            progress = accounts.copy(args.batch_size, args.skip_existing, args.dry_run)
            _print_progress(f"Accounts {args.source} -> {args.target}", progress)
            return 1 if progress.failed else 0
        if args.command == "verify":
            bad_payments = payments.verify(args.sample, args.batch_size)
            bad_accounts = accounts.verify(args.sample, args.batch_size)
            print(f"Payments mismatched: {len(bad_payments)}")
            for item in bad_payments:
                print(f"  {item}")
            print(f"Accounts mismatched: {len(bad_accounts)}")
            for item in bad_accounts:
                print(f"  {item}")
            return 1 if bad_payments or bad_accounts else 0

        print(f"{args.source}: payments={source.payments.count()} accounts={source.accounts.count()}")
        print(f"{args.target}: payments={target.payments.count()} accounts={target.accounts.count()}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
