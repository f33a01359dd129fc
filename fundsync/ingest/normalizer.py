"""Normalize raw scraper records into CanonicalTransactions.

Raw records are the dicts the scraping capability hands back, one per
transaction, with the scraper's camelCase keys (date, processedDate,
originalAmount, chargedAmount, description, status, installments, ...).
Vendor-only keys are folded into the enrichment payload selected by the
institution's SourceKind.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import date as date_type, datetime
from typing import Any, Callable, Mapping

from fundsync.ingest.canonical import (
    BankEnrichment,
    CanonicalTransaction,
    CategoryIdEnrichment,
    Enrichment,
    MerchantEnrichment,
    SectorEnrichment,
    SourceKind,
    source_kind_for,
)

logger = logging.getLogger(__name__)

UNKNOWN_DESCRIPTION = "Unknown"
PENDING_STATUS = "pending"

_CURRENCY_SYMBOLS = {
    "₪": "ILS",
    "NIS": "ILS",
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
}

_DATE_FORMATS = ("%d/%m/%Y", "%d.%m.%Y", "%Y%m%d")


class NormalizationError(ValueError):
    """Raised when a raw record can't be turned into a canonical transaction."""


@dataclass
class NormalizedBatch:
    """Outcome of normalizing one account's raw records."""
    transactions: list[CanonicalTransaction] = field(default_factory=list)
    skipped_count: int = 0     # records rejected with NormalizationError
    duplicate_count: int = 0   # same content hash seen earlier in the batch
    errors: list[str] = field(default_factory=list)


class TransactionNormalizer:
    """Map vendor-specific raw records onto the canonical model.

    Args:
        default_currency: Currency assumed when a record carries none.
    """

    def __init__(self, default_currency: str = "ILS"):
        self.default_currency = default_currency

    def normalize(
        self,
        raw: Mapping[str, Any],
        institution_id: str,
        account_id: str,
        raw_json: str | None = None,
    ) -> CanonicalTransaction:
        """Normalize a single raw record.

        Raises:
            NormalizationError: If the record is not a mapping, or on an
                unparseable date or a missing or non-finite amount.
        """
        if not isinstance(raw, Mapping):
            raise NormalizationError(f"Expected a mapping, got {type(raw).__name__}")

        txn_date = parse_date(raw.get("date"))
        processed = raw.get("processedDate")
        processed_date = parse_date(processed) if processed else txn_date

        original_amount = _parse_amount(raw.get("originalAmount"))
        charged_amount = _parse_amount(raw.get("chargedAmount"))
        if charged_amount is None:
            charged_amount = original_amount
        if original_amount is None:
            original_amount = charged_amount
        if charged_amount is None:
            raise NormalizationError("Record has neither chargedAmount nor originalAmount")

        original_currency = normalize_currency(
            raw.get("originalCurrency"), self.default_currency
        )
        charged_currency = normalize_currency(
            raw.get("chargedCurrency"), original_currency
        )

        description = _optional_str(raw.get("description")) or UNKNOWN_DESCRIPTION
        memo = _optional_str(raw.get("memo"))

        identifier = raw.get("identifier")
        identifier = str(identifier) if identifier not in (None, "") else None

        installment_number, installment_total = _parse_installments(raw.get("installments"))

        if raw_json is None:
            try:
                raw_json = json.dumps(raw, sort_keys=True, ensure_ascii=False, default=str)
            except (TypeError, ValueError) as e:
                raise NormalizationError(f"Unserializable record: {e}") from e

        return CanonicalTransaction(
            account_id=account_id,
            date=txn_date,
            processed_date=processed_date,
            original_amount=original_amount,
            original_currency=original_currency,
            charged_amount=charged_amount,
            charged_currency=charged_currency,
            description=description,
            memo=memo,
            status=PENDING_STATUS if raw.get("status") == PENDING_STATUS else "completed",
            identifier=identifier,
            installment_number=installment_number,
            installment_total=installment_total,
            raw_json=raw_json,
            enrichment=build_enrichment(raw, source_kind_for(institution_id)),
        )

    def normalize_batch(
        self,
        records: list[Mapping[str, Any]],
        institution_id: str,
        account_id: str,
    ) -> NormalizedBatch:
        """Normalize a list of records, skipping bad and repeated ones.

        A NormalizationError drops only the offending record. Records whose
        content hash already appeared earlier in the list are dropped too.
        """
        batch = NormalizedBatch()
        seen_hashes: set[str] = set()

        for raw in records:
            try:
                txn = self.normalize(raw, institution_id, account_id)
            except NormalizationError as e:
                batch.skipped_count += 1
                batch.errors.append(str(e))
                logger.warning(
                    "Skipping unnormalizable record for account %s: %s",
                    account_id, e,
                )
                continue

            if txn.content_hash in seen_hashes:
                batch.duplicate_count += 1
                logger.debug(
                    "In-batch duplicate skipped: %s %s", txn.date, txn.description,
                )
                continue

            seen_hashes.add(txn.content_hash)
            batch.transactions.append(txn)

        logger.debug(
            "Normalized %d/%d records for account %s (skipped=%d, dup=%d)",
            len(batch.transactions), len(records), account_id,
            batch.skipped_count, batch.duplicate_count,
        )
        return batch


# ── Field coercion ────────────────────────────────────────


def parse_date(value: Any) -> str:
    """Coerce a timestamp or date string into YYYY-MM-DD.

    Accepts datetime/date objects, ISO-8601 strings (with or without time,
    'Z' or an offset) and DD/MM/YYYY, DD.MM.YYYY, YYYYMMDD strings.

    Raises:
        NormalizationError: If the value is missing or unparseable.
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date_type):
        return value.isoformat()
    if not isinstance(value, str) or not value.strip():
        raise NormalizationError(f"Invalid date: {value!r}")

    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    raise NormalizationError(f"Invalid date: {value!r}")


def normalize_currency(value: Any, default: str) -> str:
    if value is None or not str(value).strip():
        return default
    text = str(value).strip()
    return _CURRENCY_SYMBOLS.get(text.upper(), text.upper())


def _parse_amount(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise NormalizationError(f"Invalid amount: {value!r}")
    try:
        amount = float(value.replace(",", "")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise NormalizationError(f"Invalid amount: {value!r}") from None
    if not math.isfinite(amount):
        raise NormalizationError(f"Invalid amount: {value!r}")
    return amount


def _parse_installments(value: Any) -> tuple[int | None, int | None]:
    if not isinstance(value, Mapping):
        return None, None
    number = _optional_int(value.get("number"))
    total = _optional_int(value.get("total"))
    if not number or not total:
        return None, None
    return number, total


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ── Enrichment builders ───────────────────────────────────


def _sector_enrichment(raw: Mapping[str, Any]) -> SectorEnrichment:
    info = raw.get("additionalInformation")
    sector = info.get("sector") if isinstance(info, Mapping) else None
    return SectorEnrichment(sector=_optional_str(sector or raw.get("sector")))


def _category_id_enrichment(raw: Mapping[str, Any]) -> CategoryIdEnrichment:
    return CategoryIdEnrichment(
        category_id=_optional_int(raw.get("categoryId")),
        arn=_optional_str(raw.get("arn")),
        plan_type_id=_optional_int(raw.get("planTypeId")),
        plan_name=_optional_str(raw.get("planName")),
    )


def _merchant_enrichment(raw: Mapping[str, Any]) -> MerchantEnrichment:
    return MerchantEnrichment(
        merchant_id=_optional_str(raw.get("merchantID")),
        merchant_address=_optional_str(raw.get("merchantAddress")),
        merchant_phone=_optional_str(raw.get("merchantPhoneNo")),
        branch_code_desc=_optional_str(raw.get("branchCodeDesc")),
        trn_type_code=_optional_str(raw.get("trnTypeCode")),
    )


_ENRICHMENT_BUILDERS: dict[SourceKind, Callable[[Mapping[str, Any]], Enrichment]] = {
    SourceKind.BANK: lambda raw: BankEnrichment(),
    SourceKind.CARD_SECTOR: _sector_enrichment,
    SourceKind.CARD_CATEGORY: _category_id_enrichment,
    SourceKind.CARD_MERCHANT: _merchant_enrichment,
}


def build_enrichment(raw: Mapping[str, Any], kind: SourceKind) -> Enrichment:
    return _ENRICHMENT_BUILDERS[kind](raw)
