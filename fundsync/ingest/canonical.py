"""Canonical transaction model: vendor-agnostic shape and content-hash identity.

Every scraped record, whatever institution produced it, is normalized into a
CanonicalTransaction. The vendor-specific leftovers travel along as an
enrichment payload whose shape is fixed by the institution's SourceKind.
"""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import ClassVar, Union


class SourceKind(str, Enum):
    """Closed set of enrichment shapes a transaction can carry."""
    BANK = "bank"
    CARD_SECTOR = "card_sector"        # Isracard / Amex: merchant sector label
    CARD_CATEGORY = "card_category"    # Max: numeric vendor category id
    CARD_MERCHANT = "card_merchant"    # Visa Cal: merchant metadata


INSTITUTION_KINDS: dict[str, SourceKind] = {
    "isracard": SourceKind.CARD_SECTOR,
    "amex": SourceKind.CARD_SECTOR,
    "max": SourceKind.CARD_CATEGORY,
    "visaCal": SourceKind.CARD_MERCHANT,
}

BANK_INSTITUTIONS: frozenset[str] = frozenset({
    "hapoalim", "leumi", "discount", "mizrahi", "union", "massad",
})


def source_kind_for(institution_id: str | None) -> SourceKind:
    """Unrecognized institutions get the minimal bank shape."""
    return INSTITUTION_KINDS.get(institution_id or "", SourceKind.BANK)


# ── Enrichment shapes ─────────────────────────────────────


@dataclass(frozen=True)
class BankEnrichment:
    kind: ClassVar[SourceKind] = SourceKind.BANK

    def vendor_hint(self) -> str | None:
        return None

    def to_dict(self) -> dict:
        return {}


@dataclass(frozen=True)
class SectorEnrichment:
    kind: ClassVar[SourceKind] = SourceKind.CARD_SECTOR
    sector: str | None = None

    def vendor_hint(self) -> str | None:
        return self.sector.strip() if self.sector and self.sector.strip() else None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CategoryIdEnrichment:
    kind: ClassVar[SourceKind] = SourceKind.CARD_CATEGORY
    category_id: int | None = None
    arn: str | None = None
    plan_type_id: int | None = None
    plan_name: str | None = None

    def vendor_hint(self) -> str | None:
        return str(self.category_id) if self.category_id is not None else None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MerchantEnrichment:
    kind: ClassVar[SourceKind] = SourceKind.CARD_MERCHANT
    merchant_id: str | None = None
    merchant_address: str | None = None
    merchant_phone: str | None = None
    branch_code_desc: str | None = None
    trn_type_code: str | None = None

    def vendor_hint(self) -> str | None:
        desc = self.branch_code_desc
        return desc.strip() if desc and desc.strip() else None

    def to_dict(self) -> dict:
        return asdict(self)


Enrichment = Union[BankEnrichment, SectorEnrichment, CategoryIdEnrichment, MerchantEnrichment]

_ENRICHMENT_TYPES: dict[SourceKind, type] = {
    SourceKind.BANK: BankEnrichment,
    SourceKind.CARD_SECTOR: SectorEnrichment,
    SourceKind.CARD_CATEGORY: CategoryIdEnrichment,
    SourceKind.CARD_MERCHANT: MerchantEnrichment,
}


def enrichment_from_dict(kind: SourceKind | str, data: dict | None) -> Enrichment:
    """Rebuild an enrichment payload from its stored dict form.

    Keys the shape doesn't know about are dropped.
    """
    cls = _ENRICHMENT_TYPES[SourceKind(kind)]
    data = data or {}
    known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
    return cls(**known)


# ── Canonical transaction ─────────────────────────────────


@dataclass
class CanonicalTransaction:
    """Normalized transaction, identified by (account_id, content_hash).

    Only category_id changes after construction.
    """
    account_id: str
    date: str                  # YYYY-MM-DD
    processed_date: str        # YYYY-MM-DD
    original_amount: float
    original_currency: str
    charged_amount: float      # signed: negative=expense, positive=income
    charged_currency: str
    description: str
    raw_json: str
    status: str = "completed"  # "completed" | "pending"
    memo: str | None = None
    identifier: str | None = None
    installment_number: int | None = None
    installment_total: int | None = None
    enrichment: Enrichment = field(default_factory=BankEnrichment)
    category_id: str | None = None
    content_hash: str = field(init=False)

    def __post_init__(self):
        self.content_hash = compute_content_hash(
            self.date, self.charged_amount, self.description
        )

    @property
    def source_kind(self) -> SourceKind:
        return self.enrichment.kind

    @property
    def installments(self) -> dict | None:
        if self.installment_number is None or self.installment_total is None:
            return None
        return {"number": self.installment_number, "total": self.installment_total}


def compute_content_hash(date: str, charged_amount: float, description: str) -> str:
    """SHA256(date|charged_amount|description), case-folded description."""
    key = f"{date}|{charged_amount:.2f}|{description.strip().casefold()}"
    return hashlib.sha256(key.encode()).hexdigest()
