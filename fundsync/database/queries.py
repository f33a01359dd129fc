"""Complex queries that span multiple tables.

These go beyond single-table CRUD and implement aggregations and
reporting queries.
"""

from __future__ import annotations

import sqlite3

from fundsync.database.models import UNKNOWN_CATEGORY

# Keeps IN (...) lists within SQLite's variable limit.
CHUNK_SIZE = 500


def chunked(items: list, size: int | None = None):
    size = size or CHUNK_SIZE
    for i in range(0, len(items), size):
        yield items[i : i + size]


def get_totals_by_category(
    conn: sqlite3.Connection,
    account_ids: list[str],
    start_date: str | None = None,
    end_date: str | None = None,
) -> list[dict]:
    """Completed-expense totals grouped by category name.

    Only rows with amount < 0 count. Transactions without a category are
    reported under 'Unknown'. Totals are negative (raw signed sums).
    Large account lists are queried in chunks and merged.
    """
    merged: dict[str, dict] = {}
    for chunk in chunked(account_ids):
        ph = ",".join("?" * len(chunk))
        sql = (
            "SELECT COALESCE(c.name, ?) AS category,"
            "  SUM(t.amount) AS total,"
            "  COUNT(*) AS count"
            " FROM transactions t"
            " LEFT JOIN categories c ON c.id = t.category_id"
            f" WHERE t.account_id IN ({ph})"
            "   AND t.status = 'completed'"
            "   AND t.amount < 0"
        )
        params: list = [UNKNOWN_CATEGORY, *chunk]
        if start_date:
            sql += " AND t.date >= ?"
            params.append(start_date)
        if end_date:
            sql += " AND t.date <= ?"
            params.append(end_date)
        sql += " GROUP BY COALESCE(c.name, ?)"
        params.append(UNKNOWN_CATEGORY)
        for r in conn.execute(sql, params).fetchall():
            entry = merged.setdefault(
                r["category"], {"category": r["category"], "total": 0.0, "count": 0}
            )
            entry["total"] += r["total"]
            entry["count"] += r["count"]
    return sorted(merged.values(), key=lambda e: e["total"])


def get_last_data_update(
    conn: sqlite3.Connection, account_ids: list[str]
) -> str | None:
    """Most recent last_scraped_at across the given accounts."""
    latest: str | None = None
    for chunk in chunked(account_ids):
        ph = ",".join("?" * len(chunk))
        row = conn.execute(
            f"SELECT MAX(last_scraped_at) FROM accounts WHERE id IN ({ph})",
            chunk,
        ).fetchone()
        if row[0] is not None and (latest is None or row[0] > latest):
            latest = row[0]
    return latest


def get_status_counts(conn: sqlite3.Connection) -> dict:
    """Counts for the `fundsync status` command."""
    row = conn.execute(
        "SELECT"
        "  (SELECT COUNT(*) FROM accounts) AS total_accounts,"
        "  (SELECT COUNT(*) FROM accounts WHERE active = 1) AS active_accounts,"
        "  (SELECT COUNT(*) FROM transactions) AS total_txns,"
        "  (SELECT COUNT(*) FROM transactions WHERE status = 'pending') AS pending,"
        "  (SELECT COUNT(*) FROM transactions t"
        "     LEFT JOIN categories c ON c.id = t.category_id"
        "     WHERE t.category_id IS NULL OR c.name = ?) AS uncategorized,"
        "  (SELECT COUNT(*) FROM categories) AS total_categories",
        (UNKNOWN_CATEGORY,),
    ).fetchone()
    return dict(row)
