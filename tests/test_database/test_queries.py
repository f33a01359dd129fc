"""Tests for complex queries in queries.py."""

import pytest

from fundsync.database import queries
from fundsync.database.models import Account, Category, Transaction
from fundsync.database.queries import (
    chunked,
    get_last_data_update,
    get_status_counts,
    get_totals_by_category,
)
from fundsync.database.repository import Repository
from tests.conftest import MIGRATIONS_DIR


@pytest.fixture
def repo():
    r = Repository(":memory:")
    r.apply_migrations(MIGRATIONS_DIR)
    yield r
    r.close()


@pytest.fixture
def accounts(repo):
    a = repo.insert_account(Account(user_id="u1", account_number="1",
                                    institution_id="leumi", alias="bank"))
    b = repo.insert_account(Account(user_id="u1", account_number="2",
                                    institution_id="max", alias="card"))
    return a, b


def _txn(account_id: str, txn_hash: str, amount: float, **overrides) -> Transaction:
    defaults = dict(
        account_id=account_id, txn_hash=txn_hash, date="2024-01-10",
        processed_date="2024-01-10", original_amount=amount, original_currency="ILS",
        amount=amount, currency="ILS", description="x", raw_json="{}",
    )
    defaults.update(overrides)
    return Transaction(**defaults)


class TestTotalsByCategory:
    def test_groups_expenses_by_category_name(self, repo, accounts):
        a, b = accounts
        food = repo.insert_category(Category(name="Food"))
        repo.insert_transaction(_txn(a.id, "h1", -10.0, category_id=food.id))
        repo.insert_transaction(_txn(b.id, "h2", -15.0, category_id=food.id))
        repo.insert_transaction(_txn(a.id, "h3", -7.0))  # uncategorized
        repo.insert_transaction(_txn(a.id, "h4", 100.0, category_id=food.id))  # income
        repo.insert_transaction(_txn(a.id, "h5", -50.0, status="pending"))

        rows = get_totals_by_category(repo.conn, [a.id, b.id])
        assert rows == [
            {"category": "Food", "total": -25.0, "count": 2},
            {"category": "Unknown", "total": -7.0, "count": 1},
        ]

    def test_unknown_category_merges_with_null(self, repo, accounts):
        a, _ = accounts
        unknown = repo.insert_category(Category(name="Unknown"))
        repo.insert_transaction(_txn(a.id, "h1", -1.0, category_id=unknown.id))
        repo.insert_transaction(_txn(a.id, "h2", -2.0))
        rows = get_totals_by_category(repo.conn, [a.id])
        assert rows == [{"category": "Unknown", "total": -3.0, "count": 2}]

    def test_date_range(self, repo, accounts):
        a, _ = accounts
        repo.insert_transaction(_txn(a.id, "h1", -1.0, date="2023-12-31"))
        repo.insert_transaction(_txn(a.id, "h2", -2.0, date="2024-01-01"))
        repo.insert_transaction(_txn(a.id, "h3", -4.0, date="2024-01-31"))
        repo.insert_transaction(_txn(a.id, "h4", -8.0, date="2024-02-01"))
        rows = get_totals_by_category(repo.conn, [a.id], "2024-01-01", "2024-01-31")
        assert rows[0]["total"] == -6.0

    def test_no_accounts(self, repo):
        assert get_totals_by_category(repo.conn, []) == []

    def test_repository_delegates(self, repo, accounts):
        a, _ = accounts
        repo.insert_transaction(_txn(a.id, "h1", -3.0))
        assert repo.get_totals_by_category([a.id]) == [
            {"category": "Unknown", "total": -3.0, "count": 1},
        ]


class TestLastDataUpdate:
    def test_latest_across_accounts(self, repo, accounts):
        a, b = accounts
        repo.update_last_scraped_at(a.id, "2024-01-01T00:00:00+00:00")
        repo.update_last_scraped_at(b.id, "2024-03-01T00:00:00+00:00")
        assert get_last_data_update(repo.conn, [a.id, b.id]) == "2024-03-01T00:00:00+00:00"

    def test_never_scraped(self, repo, accounts):
        a, _ = accounts
        assert get_last_data_update(repo.conn, [a.id]) is None

    def test_empty(self, repo):
        assert get_last_data_update(repo.conn, []) is None


class TestStatusCounts:
    def test_counts(self, repo, accounts):
        a, b = accounts
        repo.set_account_active(b.id, False)
        food = repo.insert_category(Category(name="Food"))
        repo.insert_category(Category(name="Unknown"))
        repo.insert_transaction(_txn(a.id, "h1", -1.0, category_id=food.id))
        repo.insert_transaction(_txn(a.id, "h2", -1.0, status="pending"))

        counts = get_status_counts(repo.conn)
        assert counts["total_accounts"] == 2
        assert counts["active_accounts"] == 1
        assert counts["total_txns"] == 2
        assert counts["pending"] == 1
        assert counts["uncategorized"] == 1
        assert counts["total_categories"] == 2


class TestChunkedAccountLists:
    @pytest.fixture(autouse=True)
    def small_chunks(self, monkeypatch):
        monkeypatch.setattr(queries, "CHUNK_SIZE", 1)

    def test_chunked(self):
        assert list(chunked(["a", "b", "c"])) == [["a"], ["b"], ["c"]]
        assert list(chunked(["a", "b", "c"], size=2)) == [["a", "b"], ["c"]]
        assert list(chunked([])) == []

    def test_totals_merge_across_chunks(self, repo, accounts):
        a, b = accounts
        food = repo.insert_category(Category(name="Food"))
        repo.insert_transaction(_txn(a.id, "h1", -10.0, category_id=food.id))
        repo.insert_transaction(_txn(b.id, "h2", -15.0, category_id=food.id))
        repo.insert_transaction(_txn(b.id, "h3", -40.0))

        rows = get_totals_by_category(repo.conn, [a.id, b.id])
        assert rows == [
            {"category": "Unknown", "total": -40.0, "count": 1},
            {"category": "Food", "total": -25.0, "count": 2},
        ]

    def test_last_update_across_chunks(self, repo, accounts):
        a, b = accounts
        repo.update_last_scraped_at(a.id, "2024-03-01T00:00:00+00:00")
        repo.update_last_scraped_at(b.id, "2024-01-01T00:00:00+00:00")
        assert get_last_data_update(repo.conn, [a.id, b.id]) == "2024-03-01T00:00:00+00:00"
