"""Vendor category tables: card-issuer hints to candidate category names.

Card issuers attach their own classification to each transaction (a
sector label, a numeric category id, a merchant branch description). Each
table maps that hint to an ordered tuple of category names to try; the
first one that exists in the user's category set wins.

Keys are compared case-folded and stripped. Bank transactions carry no
hint, so the bank table is empty.
"""

from __future__ import annotations

from fundsync.ingest.canonical import SourceKind

# Isracard / Amex "sector" labels
SECTOR_TABLE: dict[str, tuple[str, ...]] = {
    "מזון ומשקאות": ("Groceries", "Food"),
    "סופרמרקטים": ("Groceries", "Food"),
    "מסעדות": ("Restaurants", "Food"),
    "מסעדות ובתי קפה": ("Restaurants", "Food"),
    "דלק": ("Transportation", "Fuel"),
    "תחנות דלק": ("Transportation", "Fuel"),
    "תחבורה": ("Transportation",),
    "ביטוח": ("Insurance",),
    "רפואה": ("Health",),
    "פארם": ("Health", "Shopping"),
    "ביגוד והנעלה": ("Clothing", "Shopping"),
    "אופנה": ("Clothing", "Shopping"),
    "תקשורת": ("Utilities", "Communication"),
    "חשמל ומים": ("Utilities",),
    "פנאי": ("Entertainment",),
    "תיירות": ("Travel",),
    "חינוך": ("Education",),
    "ריהוט ובית": ("Home",),
}

# Max numeric categoryId
CATEGORY_ID_TABLE: dict[str, tuple[str, ...]] = {
    "1": ("Groceries", "Food"),
    "2": ("Restaurants", "Food"),
    "3": ("Transportation", "Fuel"),
    "4": ("Clothing", "Shopping"),
    "5": ("Home",),
    "6": ("Health",),
    "7": ("Entertainment",),
    "8": ("Utilities", "Communication"),
    "9": ("Travel",),
    "10": ("Insurance",),
    "11": ("Education",),
    "12": ("Shopping",),
}

# Visa Cal branchCodeDesc
MERCHANT_BRANCH_TABLE: dict[str, tuple[str, ...]] = {
    "מזון": ("Groceries", "Food"),
    "רשתות מזון": ("Groceries", "Food"),
    "מסעדות/קפה": ("Restaurants", "Food"),
    "מסעדות": ("Restaurants", "Food"),
    "דלק": ("Transportation", "Fuel"),
    "תחבורה ציבורית": ("Transportation",),
    "ביטוח ופיננסים": ("Insurance",),
    "רפואה ובריאות": ("Health",),
    "ביגוד": ("Clothing", "Shopping"),
    "תקשורת ומחשבים": ("Utilities", "Communication"),
    "עירייה וממשלה": ("Utilities", "Government"),
    "פנאי ובילוי": ("Entertainment",),
    "טיסות ותיירות": ("Travel",),
    "חינוך": ("Education",),
    "ריהוט/בית": ("Home",),
}

VENDOR_TABLES: dict[SourceKind, dict[str, tuple[str, ...]]] = {
    SourceKind.BANK: {},
    SourceKind.CARD_SECTOR: SECTOR_TABLE,
    SourceKind.CARD_CATEGORY: CATEGORY_ID_TABLE,
    SourceKind.CARD_MERCHANT: MERCHANT_BRANCH_TABLE,
}


def _key(hint: str) -> str:
    return hint.strip().casefold()


def lookup_candidates(
    kind: SourceKind,
    hint: str | None,
    tables: dict[SourceKind, dict[str, tuple[str, ...]]] | None = None,
) -> tuple[str, ...]:
    """Candidate category names for a vendor hint, or () when unmapped."""
    if not hint:
        return ()
    table = (tables if tables is not None else VENDOR_TABLES).get(kind, {})
    wanted = _key(hint)
    for key, names in table.items():
        if _key(key) == wanted:
            return names
    return ()
