"""Read-only analytics over persisted transactions.

Every query takes a list of account ids and an inclusive DateRange, looks
only at completed transactions, and returns zero/empty/None results when
there is nothing to report. Amounts are signed in storage (negative =
expense); reported expense figures are absolute values.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta

from fundsync.database import queries
from fundsync.database.models import UNKNOWN_CATEGORY, Transaction, TransactionFilters
from fundsync.database.repository import Repository

logger = logging.getLogger(__name__)

GRANULARITIES = ("monthly", "daily")
MERCHANT_KEY_LENGTH = 50

_DIGITS_RE = re.compile(r"\d+")
_SPACES_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    @classmethod
    def last_days(cls, days: int, today: date | None = None) -> DateRange:
        today = today or date.today()
        return cls(start=today - timedelta(days=days), end=today)


@dataclass
class TransactionSummary:
    total_income: float
    total_expenses: float
    net_amount: float
    transaction_count: int
    account_count: int
    start_date: date
    end_date: date


@dataclass
class HighestExpense:
    transaction: Transaction
    amount: float  # absolute
    description: str
    date: str


@dataclass
class RecurringPayment:
    merchant_name: str
    category: str
    amount: float  # mean absolute amount
    currency: str
    frequency: int
    last_payment_date: str
    transaction_count: int


@dataclass
class ExpenseTrend:
    period: str  # YYYY-MM or YYYY-MM-DD
    total_expenses: float
    total_income: float
    net_amount: float
    profit_trend: float  # cumulative net up to and including this period
    transaction_count: int


@dataclass
class CategoryDistribution:
    category: str
    total_amount: float
    percentage: float  # 0-100
    transaction_count: int


def merchant_key(description: str) -> str:
    """Lower-case, drop digits, collapse whitespace, keep 50 chars."""
    key = _DIGITS_RE.sub("", description.lower())
    key = _SPACES_RE.sub(" ", key).strip()
    return key[:MERCHANT_KEY_LENGTH]


def period_key(txn_date: str, granularity: str) -> str:
    if granularity == "daily":
        return txn_date[:10]
    return txn_date[:7]


class AnalyticsEngine:
    def __init__(self, repo: Repository):
        self.repo = repo

    def _completed(self, account_ids: list[str], date_range: DateRange) -> list[Transaction]:
        return self.repo.find_transactions(TransactionFilters(
            account_ids=list(account_ids),
            start_date=date_range.start.isoformat(),
            end_date=date_range.end.isoformat(),
            status="completed",
        ))

    def calculate_summary(
        self, account_ids: list[str], date_range: DateRange
    ) -> TransactionSummary:
        txns = self._completed(account_ids, date_range)
        income = sum(t.amount for t in txns if t.amount > 0)
        expenses = sum(abs(t.amount) for t in txns if t.amount < 0)
        logger.debug(
            "Summary over %d transaction(s): income=%.2f expenses=%.2f",
            len(txns), income, expenses,
        )
        return TransactionSummary(
            total_income=income,
            total_expenses=expenses,
            net_amount=income - expenses,
            transaction_count=len(txns),
            account_count=len(account_ids),
            start_date=date_range.start,
            end_date=date_range.end,
        )

    def calculate_highest_expense(
        self, account_ids: list[str], date_range: DateRange
    ) -> HighestExpense | None:
        expenses = [t for t in self._completed(account_ids, date_range) if t.amount < 0]
        if not expenses:
            return None
        top = min(expenses, key=lambda t: t.amount)
        return HighestExpense(
            transaction=top,
            amount=abs(top.amount),
            description=top.description,
            date=top.date,
        )

    def calculate_top_recurring_payments(
        self, account_ids: list[str], date_range: DateRange, top_n: int = 5
    ) -> list[RecurringPayment]:
        """Expenses grouped by merchant key; groups of two or more count.

        Ranked by mean amount times frequency.
        """
        groups: dict[str, list[Transaction]] = {}
        for txn in self._completed(account_ids, date_range):
            if txn.amount < 0:
                groups.setdefault(merchant_key(txn.description), []).append(txn)

        names = {c.id: c.name for c in self.repo.list_categories()}
        recurring: list[RecurringPayment] = []
        for txns in groups.values():
            if len(txns) < 2:
                continue
            category = next(
                (names[t.category_id] for t in txns if t.category_id in names),
                UNKNOWN_CATEGORY,
            )
            latest = max(txns, key=lambda t: t.date)
            recurring.append(RecurringPayment(
                merchant_name=latest.description,
                category=category,
                amount=sum(abs(t.amount) for t in txns) / len(txns),
                currency=txns[0].currency,
                frequency=len(txns),
                last_payment_date=latest.date,
                transaction_count=len(txns),
            ))

        recurring.sort(key=lambda r: r.amount * r.frequency, reverse=True)
        logger.debug("Found %d recurring group(s), returning %d", len(recurring), min(top_n, len(recurring)))
        return recurring[:top_n]

    def calculate_expense_trends(
        self,
        account_ids: list[str],
        date_range: DateRange,
        granularity: str = "monthly",
    ) -> list[ExpenseTrend]:
        if granularity not in GRANULARITIES:
            raise ValueError(
                f"Unknown granularity {granularity!r}, expected one of {GRANULARITIES}"
            )

        periods: dict[str, list[Transaction]] = {}
        for txn in self._completed(account_ids, date_range):
            periods.setdefault(period_key(txn.date, granularity), []).append(txn)

        trends: list[ExpenseTrend] = []
        cumulative = 0.0
        for period in sorted(periods):
            txns = periods[period]
            expenses = sum(abs(t.amount) for t in txns if t.amount < 0)
            income = sum(t.amount for t in txns if t.amount >= 0)
            net = income - expenses
            cumulative += net
            trends.append(ExpenseTrend(
                period=period,
                total_expenses=expenses,
                total_income=income,
                net_amount=net,
                profit_trend=cumulative,
                transaction_count=len(txns),
            ))
        return trends

    def calculate_category_distribution(
        self, account_ids: list[str], date_range: DateRange
    ) -> list[CategoryDistribution]:
        totals = self.repo.get_totals_by_category(
            list(account_ids),
            date_range.start.isoformat(),
            date_range.end.isoformat(),
        )
        total_expenses = sum(abs(row["total"]) for row in totals)

        distribution = [
            CategoryDistribution(
                category=row["category"],
                total_amount=abs(row["total"]),
                percentage=(abs(row["total"]) / total_expenses * 100) if total_expenses > 0 else 0.0,
                transaction_count=row["count"],
            )
            for row in totals
        ]
        distribution.sort(key=lambda d: d.total_amount, reverse=True)
        return distribution

    def get_last_data_update(self, account_ids: list[str]) -> str | None:
        return queries.get_last_data_update(self.repo.conn, list(account_ids))
