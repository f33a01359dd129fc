"""Dataclass models matching the SQLite schema.

Each dataclass corresponds to one table. Fields match column names exactly.
All primary keys are TEXT (UUID strings generated via uuid4()).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4


def _new_id() -> str:
    return str(uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


UNKNOWN_CATEGORY = "Unknown"


@dataclass
class Account:
    user_id: str
    account_number: str
    institution_id: str
    alias: str
    id: str = field(default_factory=_new_id)
    active: bool = True
    last_scraped_at: str | None = None
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)


@dataclass
class EncryptedCredential:
    user_id: str
    account_alias: str
    institution_id: str
    payload: str  # opaque cipher output; only CredentialCipher can read it
    id: str = field(default_factory=_new_id)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)


@dataclass
class Category:
    name: str
    id: str = field(default_factory=_new_id)
    parent: str | None = None
    keywords: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def is_unknown(self) -> bool:
        return self.name == UNKNOWN_CATEGORY


@dataclass
class Transaction:
    account_id: str
    txn_hash: str
    date: str
    processed_date: str
    original_amount: float
    original_currency: str
    amount: float
    currency: str
    description: str
    raw_json: str
    id: str = field(default_factory=_new_id)
    memo: str | None = None
    status: str = "completed"
    identifier: str | None = None
    installment_number: int | None = None
    installment_total: int | None = None
    category_id: str | None = None
    source_kind: str = "bank"
    enrichment: str | None = None  # JSON dict of the SourceKind's payload
    created_at: str = field(default_factory=_now)


@dataclass
class TransactionFilters:
    """Filters for Repository.find_transactions. Dates are inclusive."""
    account_ids: list[str] | None = None
    start_date: str | None = None
    end_date: str | None = None
    category_ids: list[str] | None = None
    status: str | None = None
    min_amount: float | None = None
    max_amount: float | None = None
