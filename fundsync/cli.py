"""CLI entry point for fundsync.

Commands:
    fundsync init                              Create the database and seed categories
    fundsync status                            Account, transaction and category counts
    fundsync account add USER INSTITUTION NUMBER ALIAS
    fundsync account list [--user USER]
    fundsync import FILE --account ID          Ingest a JSON export of raw records
    fundsync transactions list [--account ID ...] [--user USER] [--start DATE] [--end DATE]
                               [--category NAME ...] [--status S] [--limit N] [--offset N]
    fundsync transactions show TXN_ID
    fundsync transactions set-category TXN_ID CATEGORY
    fundsync category list                     Print category hierarchy
    fundsync category add NAME [KEYWORD ...] [--parent NAME]
    fundsync category keywords NAME [KEYWORD ...]
    fundsync category suggest DESCRIPTION [--top N]
    fundsync recategorize                      Re-run matching on 'Unknown' transactions
    fundsync report {summary,highest,recurring,trends,distribution}
                    [--account ID ...] [--start DATE] [--end DATE]
                    [--granularity monthly|daily] [--top N]
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import date, timedelta
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_REPORT_DAYS = 30


def _setup_logging() -> None:
    """Configure logging based on FUNDSYNC_LOG_LEVEL env var."""
    level = os.environ.get("FUNDSYNC_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_config(required: bool = True):
    """Load application config from the config directory.

    With required=False a missing config directory yields None.
    """
    from fundsync.config import Config

    try:
        return Config()
    except FileNotFoundError:
        if required:
            raise
        return None


def _get_migrations_dir() -> Path:
    from fundsync.config import migrations_dir_from_env
    from fundsync.database.repository import DEFAULT_MIGRATIONS_DIR

    return migrations_dir_from_env() or DEFAULT_MIGRATIONS_DIR


def _get_repo():
    """Create a Repository on the configured database, migrations applied."""
    from fundsync.config import db_path_from_env
    from fundsync.database.repository import Repository

    repo = Repository(db_path=db_path_from_env())
    repo.apply_migrations(_get_migrations_dir())
    return repo


def _get_engine(repo):
    from fundsync.categorize.engine import CategorizationEngine

    return CategorizationEngine(repo)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date (expected YYYY-MM-DD): {value}")


# ── Command handlers ─────────────────────────────────────


def cmd_init(args: argparse.Namespace) -> int:
    """Create the schema, seed categories and make sure 'Unknown' exists."""
    from fundsync.categorize.engine import seed_categories

    repo = _get_repo()
    try:
        config = _get_config(required=False)
        created = 0
        if config is not None:
            try:
                created = seed_categories(repo, config)
            except (FileNotFoundError, ValueError) as e:
                print(f"Error: {e}")
                return 1
        else:
            print("No config directory found; skipping category seed.")
        _get_engine(repo)
        print(f"Database ready at {repo.db_path} ({created} categories seeded).")
        return 0
    finally:
        repo.close()


def cmd_status(args: argparse.Namespace) -> int:
    """Display system status counts."""
    from fundsync.database.queries import get_status_counts

    repo = _get_repo()
    try:
        counts = get_status_counts(repo.conn)
    finally:
        repo.close()

    print("fundsync status")
    print("=" * 40)
    print(f"  Accounts:            {counts['total_accounts']:,} ({counts['active_accounts']:,} active)")
    print(f"  Total transactions:  {counts['total_txns']:,}")
    print(f"  Pending:             {counts['pending']:,}")
    print(f"  Uncategorized:       {counts['uncategorized']:,}")
    print(f"  Categories:          {counts['total_categories']:,}")
    return 0


def cmd_account(args: argparse.Namespace) -> int:
    """Account management commands."""
    from fundsync.database.models import Account

    sub = args.account_command
    if sub is None:
        print("Usage: fundsync account {add,list}")
        return 1

    repo = _get_repo()
    try:
        if sub == "add":
            account = repo.insert_account(Account(
                user_id=args.user,
                institution_id=args.institution,
                account_number=args.number,
                alias=args.alias,
            ))
            print(f"Added account '{account.alias}' ({account.id}).")
            return 0

        accounts = (
            repo.get_accounts_for_user(args.user) if args.user else repo.list_accounts()
        )
        if not accounts:
            print("No accounts.")
            return 0
        for a in accounts:
            state = "active" if a.active else "inactive"
            last = a.last_scraped_at or "never"
            print(f"  {a.id}  {a.user_id:<12} {a.institution_id:<10} {a.alias:<20} {state:<8} last={last}")
        return 0
    finally:
        repo.close()


def cmd_import(args: argparse.Namespace) -> int:
    """Ingest a JSON file of raw scraper records into one account."""
    from fundsync.ingest.normalizer import TransactionNormalizer
    from fundsync.jobs.orchestrator import ScrapeOrchestrator

    filepath = args.file.resolve()
    if not filepath.exists():
        print(f"Error: File not found: {filepath}")
        return 1

    try:
        with open(filepath, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: Could not read {filepath.name}: {e}")
        return 1

    records = data.get("transactions", []) if isinstance(data, dict) else data
    if not isinstance(records, list):
        print("Error: Expected a list of transactions (or {\"transactions\": [...]})")
        return 1

    config = _get_config(required=False)
    currency = config.default_currency if config is not None else "ILS"

    repo = _get_repo()
    try:
        account = repo.get_account(args.account)
        if account is None:
            print(f"Error: Account '{args.account}' not found.")
            return 1

        orchestrator = ScrapeOrchestrator(
            repo=repo,
            engine=_get_engine(repo),
            normalizer=TransactionNormalizer(default_currency=currency),
        )
        result = orchestrator.ingest_records(account.id, account.institution_id, records)
        print(
            f"{filepath.name}: new={result.saved_count}, dup={result.duplicate_count},"
            f" skipped={result.skipped_count}"
        )
        for err in result.errors:
            print(f"  skipped: {err}")
        return 0
    finally:
        repo.close()


def cmd_transactions(args: argparse.Namespace) -> int:
    """Browse stored transactions and override their categories."""
    from fundsync.database.models import TransactionFilters

    sub = args.transactions_command
    if sub is None:
        print("Usage: fundsync transactions {list,show,set-category}")
        return 1

    repo = _get_repo()
    try:
        names = {c.id: c.name for c in repo.list_categories()}

        if sub == "list":
            if args.start and args.end and args.start > args.end:
                print(f"Error: --start {args.start} is after --end {args.end}")
                return 1
            category_ids = None
            if args.category:
                category_ids = []
                for name in args.category:
                    cat = repo.get_category_by_name(name)
                    if cat is None:
                        print(f"Error: Category '{name}' not found.")
                        return 1
                    category_ids.append(cat.id)
            account_ids = args.account
            if account_ids is None and args.user:
                account_ids = [a.id for a in repo.get_accounts_for_user(args.user)]

            txns = repo.find_transactions(
                TransactionFilters(
                    account_ids=account_ids,
                    start_date=args.start.isoformat() if args.start else None,
                    end_date=args.end.isoformat() if args.end else None,
                    category_ids=category_ids,
                    status=args.status,
                ),
                limit=args.limit,
                offset=args.offset,
            )
            if not txns:
                print("No transactions.")
                return 0
            for t in txns:
                category = names.get(t.category_id, "-")
                pending = " (pending)" if t.status == "pending" else ""
                print(
                    f"  {t.id}  {t.date}  {t.amount:>10,.2f} {t.currency}"
                    f"  {category:<16} {t.description[:40]}{pending}"
                )
            print(f"{len(txns)} transaction(s)")
            return 0

        txn = repo.get_transaction(args.txn_id)
        if txn is None:
            print(f"Error: Transaction '{args.txn_id}' not found.")
            return 1

        if sub == "show":
            print(f"Transaction {txn.id}")
            print(f"  Account:      {txn.account_id}")
            print(f"  Date:         {txn.date} (processed {txn.processed_date})")
            print(f"  Amount:       {txn.amount:,.2f} {txn.currency}"
                  f" (original {txn.original_amount:,.2f} {txn.original_currency})")
            print(f"  Description:  {txn.description}")
            if txn.memo:
                print(f"  Memo:         {txn.memo}")
            print(f"  Status:       {txn.status}")
            print(f"  Category:     {names.get(txn.category_id, '-')}")
            if txn.installment_total:
                print(f"  Installment:  {txn.installment_number}/{txn.installment_total}")
            return 0

        if sub == "set-category":
            cat = repo.get_category_by_name(args.category)
            if cat is None:
                print(f"Error: Category '{args.category}' not found.")
                return 1
            repo.update_transaction_category(txn.id, cat.id)
            logger.info(
                "Category override on %s: %s -> %s",
                txn.id, names.get(txn.category_id), cat.name,
            )
            print(f"Set category of {txn.id} to '{cat.name}'.")
            return 0
        return 1
    finally:
        repo.close()


def _print_hierarchy(hierarchy: dict, parent: str = "root", depth: int = 0) -> None:
    children = hierarchy.get(parent, [])
    for i, cat in enumerate(children):
        connector = "└── " if i == len(children) - 1 else "├── "
        keywords = f"  [{', '.join(cat.keywords)}]" if cat.keywords else ""
        print(f"{'    ' * depth}{connector}{cat.name}{keywords}")
        if cat.name in hierarchy:
            _print_hierarchy(hierarchy, cat.name, depth + 1)


def cmd_category(args: argparse.Namespace) -> int:
    """Category management commands."""
    from fundsync.database.repository import DuplicateCategoryError

    sub = args.category_command
    if sub is None:
        print("Usage: fundsync category {list,add,keywords,suggest}")
        return 1

    repo = _get_repo()
    try:
        engine = _get_engine(repo)

        if sub == "list":
            _print_hierarchy(engine.category_hierarchy())
            return 0

        if sub == "add":
            try:
                cat = engine.add_category(args.name, args.keywords, parent=args.parent)
            except DuplicateCategoryError as e:
                print(f"Error: {e}")
                return 1
            print(f"Added '{cat.name}' with {len(cat.keywords)} keyword(s).")
            return 0

        if sub == "keywords":
            cat = repo.get_category_by_name(args.name)
            if cat is None:
                print(f"Error: Category '{args.name}' not found.")
                return 1
            engine.update_keywords(cat.id, args.keywords)
            print(f"Updated '{cat.name}': {', '.join(args.keywords) or '(none)'}")
            return 0

        if sub == "suggest":
            suggestions = engine.suggest_categories(args.description, top_n=args.top)
            if not suggestions:
                print("No suggestions.")
                return 0
            for s in suggestions:
                print(f"  {s.category:<24} {s.confidence:.0%}")
            return 0
        return 1
    finally:
        repo.close()


def cmd_recategorize(args: argparse.Namespace) -> int:
    """Re-run categorization on transactions currently in 'Unknown'."""
    repo = _get_repo()
    try:
        processed, updated = _get_engine(repo).recategorize_unknown()
    finally:
        repo.close()
    print(f"Recategorized {updated} of {processed} unknown transaction(s).")
    return 0


def cmd_report(args: argparse.Namespace) -> int:
    """Analytics reports."""
    from fundsync.analytics import AnalyticsEngine, DateRange

    sub = args.report_command
    if sub is None:
        print("Usage: fundsync report {summary,highest,recurring,trends,distribution}")
        return 1

    end = args.end or date.today()
    start = args.start or (end - timedelta(days=DEFAULT_REPORT_DAYS))
    if start > end:
        print(f"Error: --start {start} is after --end {end}")
        return 1
    date_range = DateRange(start=start, end=end)

    repo = _get_repo()
    try:
        account_ids = args.account or [a.id for a in repo.list_accounts()]
        analytics = AnalyticsEngine(repo)
        print(f"Report: {sub}  {start} .. {end}  ({len(account_ids)} account(s))")
        print("-" * 60)

        if sub == "summary":
            s = analytics.calculate_summary(account_ids, date_range)
            print(f"  Income:        {s.total_income:>12,.2f}")
            print(f"  Expenses:      {s.total_expenses:>12,.2f}")
            print(f"  Net:           {s.net_amount:>12,.2f}")
            print(f"  Transactions:  {s.transaction_count:>12,}")
            last = analytics.get_last_data_update(account_ids)
            print(f"  Last update:   {last or 'never'}")

        elif sub == "highest":
            h = analytics.calculate_highest_expense(account_ids, date_range)
            if h is None:
                print("  No expenses in range.")
            else:
                print(f"  {h.date}  {h.amount:,.2f} {h.transaction.currency}  {h.description}")

        elif sub == "recurring":
            top = args.top
            if top is None:
                config = _get_config(required=False)
                top = config.recurring_top_n if config is not None else 5
            payments = analytics.calculate_top_recurring_payments(account_ids, date_range, top_n=top)
            if not payments:
                print("  No recurring payments found.")
            for p in payments:
                print(
                    f"  {p.merchant_name[:30]:<30} {p.amount:>10,.2f} {p.currency}"
                    f"  x{p.frequency:<3} {p.category:<16} last={p.last_payment_date}"
                )

        elif sub == "trends":
            trends = analytics.calculate_expense_trends(
                account_ids, date_range, granularity=args.granularity,
            )
            for t in trends:
                print(
                    f"  {t.period:<10} exp={t.total_expenses:>10,.2f}"
                    f" inc={t.total_income:>10,.2f} net={t.net_amount:>10,.2f}"
                    f" cum={t.profit_trend:>10,.2f} n={t.transaction_count}"
                )

        elif sub == "distribution":
            for d in analytics.calculate_category_distribution(account_ids, date_range):
                print(
                    f"  {d.category:<24} {d.total_amount:>10,.2f}"
                    f" {d.percentage:>6.1f}%  n={d.transaction_count}"
                )
        return 0
    finally:
        repo.close()


# ── Main entry point ─────────────────────────────────────


_COMMANDS = {
    "init": cmd_init,
    "status": cmd_status,
    "account": cmd_account,
    "import": cmd_import,
    "transactions": cmd_transactions,
    "category": cmd_category,
    "recategorize": cmd_recategorize,
    "report": cmd_report,
}


def main(argv: list[str] | None = None):
    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="fundsync",
        description="fundsync transaction ingestion and analytics",
    )
    subparsers = parser.add_subparsers(dest="command")

    # init
    subparsers.add_parser("init", help="Create the database and seed categories")

    # status
    subparsers.add_parser("status", help="Show account, transaction and category counts")

    # account
    acct_p = subparsers.add_parser("account", help="Manage accounts")
    acct_sub = acct_p.add_subparsers(dest="account_command")
    acct_add_p = acct_sub.add_parser("add", help="Add an account")
    acct_add_p.add_argument("user", help="Owning user ID")
    acct_add_p.add_argument("institution", help="Institution ID (e.g. hapoalim, isracard, max, visaCal)")
    acct_add_p.add_argument("number", help="Account number")
    acct_add_p.add_argument("alias", help="Account alias (credential lookup key)")
    acct_list_p = acct_sub.add_parser("list", help="List accounts")
    acct_list_p.add_argument("--user", help="Only this user's accounts")

    # import
    import_p = subparsers.add_parser("import", help="Ingest a JSON file of raw records")
    import_p.add_argument("file", type=Path, help="JSON file: list of records")
    import_p.add_argument("--account", required=True, help="Target account ID")

    # transactions
    txn_p = subparsers.add_parser("transactions", help="Browse transactions and override categories")
    txn_sub = txn_p.add_subparsers(dest="transactions_command")
    txn_list_p = txn_sub.add_parser("list", help="List transactions, newest first")
    txn_list_p.add_argument("--account", action="append", help="Account ID (repeatable; default all)")
    txn_list_p.add_argument("--user", help="Only this user's accounts")
    txn_list_p.add_argument("--start", type=_parse_date, help="Start date YYYY-MM-DD (inclusive)")
    txn_list_p.add_argument("--end", type=_parse_date, help="End date YYYY-MM-DD (inclusive)")
    txn_list_p.add_argument("--category", action="append", help="Category name (repeatable)")
    txn_list_p.add_argument("--status", choices=["completed", "pending"])
    txn_list_p.add_argument("--limit", type=int, default=50, help="Maximum rows (default 50)")
    txn_list_p.add_argument("--offset", type=int, default=0, help="Rows to skip")
    txn_show_p = txn_sub.add_parser("show", help="Show one transaction")
    txn_show_p.add_argument("txn_id", help="Transaction ID")
    txn_set_p = txn_sub.add_parser("set-category", help="Manually set a transaction's category")
    txn_set_p.add_argument("txn_id", help="Transaction ID")
    txn_set_p.add_argument("category", help="Category name")

    # category
    cat_p = subparsers.add_parser("category", help="Manage categories")
    cat_sub = cat_p.add_subparsers(dest="category_command")
    cat_sub.add_parser("list", help="Print category hierarchy")
    cat_add_p = cat_sub.add_parser("add", help="Add a new category")
    cat_add_p.add_argument("name", help="Category name")
    cat_add_p.add_argument("keywords", nargs="*", help="Matching keywords")
    cat_add_p.add_argument("--parent", help="Parent category name")
    cat_kw_p = cat_sub.add_parser("keywords", help="Replace a category's keywords")
    cat_kw_p.add_argument("name", help="Category name")
    cat_kw_p.add_argument("keywords", nargs="*", help="New keyword list")
    cat_sug_p = cat_sub.add_parser("suggest", help="Suggest categories for a description")
    cat_sug_p.add_argument("description", help="Transaction description")
    cat_sug_p.add_argument("--top", type=int, default=3, help="Number of suggestions")

    # recategorize
    subparsers.add_parser("recategorize", help="Re-run categorization on 'Unknown' transactions")

    # report
    report_p = subparsers.add_parser("report", help="Analytics reports")
    report_p.add_argument(
        "report_command", nargs="?",
        choices=["summary", "highest", "recurring", "trends", "distribution"],
    )
    report_p.add_argument("--account", action="append", help="Account ID (repeatable; default all)")
    report_p.add_argument("--start", type=_parse_date, help="Start date YYYY-MM-DD (inclusive)")
    report_p.add_argument("--end", type=_parse_date, help="End date YYYY-MM-DD (inclusive, default today)")
    report_p.add_argument("--granularity", choices=["monthly", "daily"], default="monthly")
    report_p.add_argument("--top", type=int, help="Number of recurring payments to show")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
