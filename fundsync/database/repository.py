"""Repository: CRUD operations against SQLite using raw SQL.

All methods take/return dataclass instances from models.py.
Connection management uses a single connection with WAL mode and
foreign keys enabled.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from fundsync.database import queries
from fundsync.database.models import (
    Account,
    Category,
    EncryptedCredential,
    Transaction,
    TransactionFilters,
)

DEFAULT_MIGRATIONS_DIR = Path(__file__).parent / "migrations"


class DuplicateCategoryError(Exception):
    """Raised when creating a category whose name already exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Category '{name}' already exists")


class DuplicateCredentialError(Exception):
    """Raised when a user already has a credential stored under an alias."""

    def __init__(self, user_id: str, account_alias: str):
        self.user_id = user_id
        self.account_alias = account_alias
        super().__init__(
            f"Credential for alias '{account_alias}' already exists"
        )


class Repository:
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path = DEFAULT_MIGRATIONS_DIR):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version ("
            "  version INTEGER PRIMARY KEY,"
            "  description TEXT,"
            "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
            ")"
        )
        self.conn.commit()

        row = self.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        current = row[0] or 0

        for sql_file in sorted(Path(migrations_dir).glob("*.sql")):
            version = int(sql_file.name.split("_")[0])
            if version > current:
                try:
                    self.conn.execute("BEGIN")
                    # executescript auto-commits, so we split statements manually
                    sql_text = sql_file.read_text()
                    for statement in sql_text.split(";"):
                        statement = statement.strip()
                        if statement:
                            self.conn.execute(statement)
                    self.conn.execute(
                        "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                        (version, sql_file.stem),
                    )
                    self.conn.commit()
                except Exception:
                    self.conn.rollback()
                    raise

    # ── Accounts ────────────────────────────────────────────

    def insert_account(self, account: Account) -> Account:
        self.conn.execute(
            "INSERT INTO accounts (id, user_id, account_number, institution_id,"
            " alias, active, last_scraped_at, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (account.id, account.user_id, account.account_number,
             account.institution_id, account.alias, int(account.active),
             account.last_scraped_at, account.created_at, account.updated_at),
        )
        self.conn.commit()
        return account

    def get_account(self, account_id: str) -> Account | None:
        row = self.conn.execute(
            "SELECT * FROM accounts WHERE id = ?", (account_id,)
        ).fetchone()
        return self._row_to_account(row) if row else None

    def list_accounts(self) -> list[Account]:
        rows = self.conn.execute(
            "SELECT * FROM accounts ORDER BY user_id, alias"
        ).fetchall()
        return [self._row_to_account(r) for r in rows]

    def get_accounts_for_user(self, user_id: str) -> list[Account]:
        rows = self.conn.execute(
            "SELECT * FROM accounts WHERE user_id = ? ORDER BY alias",
            (user_id,),
        ).fetchall()
        return [self._row_to_account(r) for r in rows]

    def get_active_accounts(self, user_id: str) -> list[Account]:
        rows = self.conn.execute(
            "SELECT * FROM accounts WHERE user_id = ? AND active = 1"
            " ORDER BY alias",
            (user_id,),
        ).fetchall()
        return [self._row_to_account(r) for r in rows]

    def set_account_active(self, account_id: str, active: bool):
        self.conn.execute(
            "UPDATE accounts SET active = ?, updated_at = ? WHERE id = ?",
            (int(active), _utcnow(), account_id),
        )
        self.conn.commit()

    def update_last_scraped_at(self, account_id: str, when: str | None = None):
        when = when or _utcnow()
        self.conn.execute(
            "UPDATE accounts SET last_scraped_at = ?, updated_at = ? WHERE id = ?",
            (when, when, account_id),
        )
        self.conn.commit()

    def delete_account(self, account_id: str):
        """Delete an account; its transactions go with it (ON DELETE CASCADE)."""
        self.conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
        self.conn.commit()

    # ── Credentials ─────────────────────────────────────────

    def insert_credential(self, cred: EncryptedCredential) -> EncryptedCredential:
        """Store an encrypted credential blob.

        Raises:
            DuplicateCredentialError: If the user already has one for the alias.
        """
        try:
            self.conn.execute(
                "INSERT INTO credentials (id, user_id, account_alias,"
                " institution_id, payload, created_at, updated_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (cred.id, cred.user_id, cred.account_alias, cred.institution_id,
                 cred.payload, cred.created_at, cred.updated_at),
            )
            self.conn.commit()
            return cred
        except sqlite3.IntegrityError as e:
            raise DuplicateCredentialError(cred.user_id, cred.account_alias) from e

    def find_credential(
        self, user_id: str, account_alias: str
    ) -> EncryptedCredential | None:
        row = self.conn.execute(
            "SELECT * FROM credentials WHERE user_id = ? AND account_alias = ?",
            (user_id, account_alias),
        ).fetchone()
        return self._row_to_credential(row) if row else None

    # ── Categories ──────────────────────────────────────────

    def insert_category(self, category: Category) -> Category:
        """Insert a category.

        Raises:
            DuplicateCategoryError: If a category with the same name exists.
        """
        try:
            self.conn.execute(
                "INSERT INTO categories (id, name, parent, keywords,"
                " created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                (category.id, category.name, category.parent,
                 json.dumps(category.keywords, ensure_ascii=False),
                 category.created_at, category.updated_at),
            )
            self.conn.commit()
            return category
        except sqlite3.IntegrityError as e:
            raise DuplicateCategoryError(category.name) from e

    def list_categories(self) -> list[Category]:
        """All categories in insertion order (the order keyword matching uses)."""
        rows = self.conn.execute(
            "SELECT * FROM categories ORDER BY rowid"
        ).fetchall()
        return [self._row_to_category(r) for r in rows]

    def get_category(self, category_id: str) -> Category | None:
        row = self.conn.execute(
            "SELECT * FROM categories WHERE id = ?", (category_id,)
        ).fetchone()
        return self._row_to_category(row) if row else None

    def get_category_by_name(self, name: str) -> Category | None:
        row = self.conn.execute(
            "SELECT * FROM categories WHERE name = ?", (name,)
        ).fetchone()
        return self._row_to_category(row) if row else None

    def update_category_keywords(self, category_id: str, keywords: list[str]):
        self.conn.execute(
            "UPDATE categories SET keywords = ?, updated_at = ? WHERE id = ?",
            (json.dumps(keywords, ensure_ascii=False), _utcnow(), category_id),
        )
        self.conn.commit()

    # ── Transactions ────────────────────────────────────────

    def insert_transaction(self, txn: Transaction) -> bool:
        """Insert a transaction unless (account_id, txn_hash) already exists.

        Returns True if a row was written, False if it was a duplicate.
        """
        cur = self.conn.execute(
            "INSERT INTO transactions"
            " (id, account_id, txn_hash, date, processed_date, original_amount,"
            "  original_currency, amount, currency, description, memo, status,"
            "  identifier, installment_number, installment_total, category_id,"
            "  source_kind, enrichment, raw_json, created_at)"
            " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)"
            " ON CONFLICT(account_id, txn_hash) DO NOTHING",
            (txn.id, txn.account_id, txn.txn_hash, txn.date,
             txn.processed_date, txn.original_amount, txn.original_currency,
             txn.amount, txn.currency, txn.description, txn.memo,
             txn.status, txn.identifier, txn.installment_number,
             txn.installment_total, txn.category_id, txn.source_kind,
             txn.enrichment, txn.raw_json, txn.created_at),
        )
        self.conn.commit()
        return cur.rowcount == 1

    def get_transaction(self, txn_id: str) -> Transaction | None:
        row = self.conn.execute(
            "SELECT * FROM transactions WHERE id = ?", (txn_id,)
        ).fetchone()
        return self._row_to_transaction(row) if row else None

    def find_transaction_by_hash(
        self, account_id: str, txn_hash: str
    ) -> Transaction | None:
        row = self.conn.execute(
            "SELECT * FROM transactions WHERE account_id = ? AND txn_hash = ?",
            (account_id, txn_hash),
        ).fetchone()
        return self._row_to_transaction(row) if row else None

    def find_transactions(
        self,
        filters: TransactionFilters,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Transaction]:
        """Filtered transactions, newest first.

        An account list longer than queries.CHUNK_SIZE is fetched chunk by
        chunk; the pages are then merged and sliced in Python.
        """
        conditions: list[str] = []
        params: list = []

        account_ids = filters.account_ids
        if account_ids is not None and not account_ids:
            return []
        if filters.start_date:
            conditions.append("date >= ?")
            params.append(filters.start_date)
        if filters.end_date:
            conditions.append("date <= ?")
            params.append(filters.end_date)
        if filters.category_ids:
            ph = ",".join("?" * len(filters.category_ids))
            conditions.append(f"category_id IN ({ph})")
            params.extend(filters.category_ids)
        if filters.status:
            conditions.append("status = ?")
            params.append(filters.status)
        if filters.min_amount is not None:
            conditions.append("amount >= ?")
            params.append(filters.min_amount)
        if filters.max_amount is not None:
            conditions.append("amount <= ?")
            params.append(filters.max_amount)

        if account_ids is None or len(account_ids) <= queries.CHUNK_SIZE:
            if account_ids:
                ph = ",".join("?" * len(account_ids))
                conditions.insert(0, f"account_id IN ({ph})")
                params[:0] = account_ids
            rows = self._select_transactions(conditions, params, limit, offset)
            return [self._row_to_transaction(r) for r in rows]

        rows = []
        for chunk in queries.chunked(account_ids):
            ph = ",".join("?" * len(chunk))
            rows.extend(self._select_transactions(
                [f"account_id IN ({ph})", *conditions],
                [*chunk, *params],
            ))
        rows.sort(key=lambda r: (r["date"], r["row_order"]), reverse=True)
        start = offset or 0
        end = start + limit if limit is not None else None
        return [self._row_to_transaction(r) for r in rows[start:end]]

    def _select_transactions(
        self,
        conditions: list[str],
        params: list,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[sqlite3.Row]:
        sql = "SELECT rowid AS row_order, * FROM transactions"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY date DESC, rowid DESC"
        params = list(params)
        if limit is not None or offset is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([-1 if limit is None else limit, offset or 0])
        return self.conn.execute(sql, params).fetchall()

    def update_transaction_category(self, txn_id: str, category_id: str | None):
        """Set a transaction's category (ingestion, recategorization or manual override)."""
        self.conn.execute(
            "UPDATE transactions SET category_id = ? WHERE id = ?",
            (category_id, txn_id),
        )
        self.conn.commit()

    def get_totals_by_category(
        self,
        account_ids: list[str],
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[dict]:
        """Expense totals per category name; see queries.get_totals_by_category."""
        return queries.get_totals_by_category(
            self.conn, account_ids, start_date, end_date
        )

    # ── Row Converters ──────────────────────────────────────

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"], user_id=row["user_id"],
            account_number=row["account_number"],
            institution_id=row["institution_id"], alias=row["alias"],
            active=bool(row["active"]),
            last_scraped_at=row["last_scraped_at"],
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_credential(row: sqlite3.Row) -> EncryptedCredential:
        return EncryptedCredential(
            id=row["id"], user_id=row["user_id"],
            account_alias=row["account_alias"],
            institution_id=row["institution_id"], payload=row["payload"],
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"], name=row["name"], parent=row["parent"],
            keywords=json.loads(row["keywords"] or "[]"),
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"], account_id=row["account_id"],
            txn_hash=row["txn_hash"], date=row["date"],
            processed_date=row["processed_date"],
            original_amount=row["original_amount"],
            original_currency=row["original_currency"],
            amount=row["amount"], currency=row["currency"],
            description=row["description"], memo=row["memo"],
            status=row["status"], identifier=row["identifier"],
            installment_number=row["installment_number"],
            installment_total=row["installment_total"],
            category_id=row["category_id"],
            source_kind=row["source_kind"],
            enrichment=row["enrichment"], raw_json=row["raw_json"],
            created_at=row["created_at"],
        )


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()
