"""Categorization engine: 3-step fallback chain.

Steps (in priority order):
1. Vendor map: card issuer's own classification (sector, category id,
   merchant branch) mapped through the SourceKind's table
2. Keywords: category keywords found in the description
3. Fallback: the 'Unknown' category

Categories are held in an in-memory snapshot. Mutations go through the
repository and then replace the snapshot, so readers always see either
the old or the new category set, never a mix.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Iterable

from fundsync.categorize.keywords import (
    Suggestion,
    match_keywords,
    score_suggestions,
)
from fundsync.categorize.vendor_map import VENDOR_TABLES, lookup_candidates
from fundsync.config import Config
from fundsync.database.models import (
    UNKNOWN_CATEGORY,
    Category,
    Transaction,
    TransactionFilters,
)
from fundsync.database.repository import DuplicateCategoryError, Repository
from fundsync.ingest.canonical import (
    BankEnrichment,
    CanonicalTransaction,
    Enrichment,
    enrichment_from_dict,
)

logger = logging.getLogger(__name__)


@dataclass
class CategorizeResult:
    """Outcome of categorizing a single transaction."""
    category_id: str
    category_name: str
    method: str  # "vendor_map", "keyword" or "fallback"


class CategorizationEngine:
    """Assigns a category to every transaction it is shown.

    Args:
        repo: Category (and, for recategorization, transaction) store.
        vendor_tables: Per-SourceKind hint tables; defaults to vendor_map's.
    """

    def __init__(self, repo: Repository, vendor_tables=None):
        self.repo = repo
        self.vendor_tables = vendor_tables if vendor_tables is not None else VENDOR_TABLES
        self._lock = threading.Lock()
        self._snapshot: tuple[Category, ...] = ()
        self.reload()
        self.ensure_unknown_category()

    # ── Snapshot ────────────────────────────────────────────

    @property
    def categories(self) -> tuple[Category, ...]:
        return self._snapshot

    def reload(self) -> None:
        snapshot = tuple(self.repo.list_categories())
        with self._lock:
            self._snapshot = snapshot
        logger.info("Loaded %d categories for matching", len(snapshot))

    def ensure_unknown_category(self) -> Category:
        existing = self.repo.get_category_by_name(UNKNOWN_CATEGORY)
        if existing is not None:
            return existing
        logger.info("Creating default '%s' category", UNKNOWN_CATEGORY)
        try:
            created = self.repo.insert_category(Category(name=UNKNOWN_CATEGORY))
        except DuplicateCategoryError:
            # another engine on the same database got there first
            created = self.repo.get_category_by_name(UNKNOWN_CATEGORY)
        self.reload()
        return created

    def _unknown(self, snapshot: tuple[Category, ...]) -> Category:
        for cat in snapshot:
            if cat.is_unknown:
                return cat
        return self.ensure_unknown_category()

    # ── Categorize ──────────────────────────────────────────

    def resolve(self, txn: CanonicalTransaction) -> CategorizeResult:
        return self._resolve(txn.description, txn.enrichment)

    def categorize(self, txn: CanonicalTransaction) -> str:
        """Return the category id for a transaction. Never raises for bad input."""
        return self.resolve(txn).category_id

    def _resolve(self, description: str, enrichment: Enrichment) -> CategorizeResult:
        snapshot = self._snapshot
        by_name = {c.name: c for c in snapshot}

        # Step 1: vendor enrichment
        hint = enrichment.vendor_hint()
        candidates = lookup_candidates(enrichment.kind, hint, self.vendor_tables)
        for name in candidates:
            cat = by_name.get(name)
            if cat is not None:
                return CategorizeResult(cat.id, cat.name, "vendor_map")
        if candidates:
            logger.debug(
                "Vendor hint %r (%s) maps to %s but none of them exist",
                hint, enrichment.kind.value, list(candidates),
            )

        # Step 2: keywords
        match = match_keywords(description, snapshot)
        if match is not None:
            logger.debug(
                "Categorized %r as %s (keyword %r)",
                description, match.category.name, match.keyword,
            )
            return CategorizeResult(match.category.id, match.category.name, "keyword")

        # Step 3: fallback
        unknown = self._unknown(snapshot)
        logger.debug("No category match for %r, assigning '%s'", description, unknown.name)
        return CategorizeResult(unknown.id, unknown.name, "fallback")

    def categorize_batch(self, txns: Iterable[CanonicalTransaction]) -> list[str]:
        results = [self.resolve(t) for t in txns]
        unknown = sum(1 for r in results if r.method == "fallback")
        logger.info(
            "Categorized %d/%d transactions (unknown=%d)",
            len(results) - unknown, len(results), unknown,
        )
        return [r.category_id for r in results]

    def suggest_categories(self, description: str, top_n: int = 3) -> list[Suggestion]:
        """Advisory ranking of likely categories; never assigns anything."""
        return score_suggestions(description, self._snapshot, top_n=top_n)

    def recategorize_unknown(self) -> tuple[int, int]:
        """Re-run categorization over stored transactions sitting in 'Unknown'.

        Transactions in any other category are left alone, so manual
        assignments survive. Returns (processed, updated).
        """
        unknown = self._unknown(self._snapshot)
        rows = self.repo.find_transactions(
            TransactionFilters(category_ids=[unknown.id])
        )
        updated = 0
        for row in rows:
            result = self._resolve(row.description, _stored_enrichment(row))
            if result.category_id != unknown.id:
                self.repo.update_transaction_category(row.id, result.category_id)
                updated += 1
        logger.info("Recategorized %d/%d unknown transactions", updated, len(rows))
        return len(rows), updated

    # ── Category management ─────────────────────────────────

    def add_category(
        self, name: str, keywords: list[str], parent: str | None = None
    ) -> Category:
        """Create a category and refresh the snapshot.

        Raises:
            DuplicateCategoryError: If the name is taken.
        """
        logger.info("Adding category %s (parent=%s, %d keywords)", name, parent, len(keywords))
        category = self.repo.insert_category(
            Category(name=name, parent=parent, keywords=list(keywords))
        )
        self.reload()
        return category

    def update_keywords(self, category_id: str, keywords: list[str]) -> None:
        logger.info("Updating keywords for category %s", category_id)
        self.repo.update_category_keywords(category_id, list(keywords))
        self.reload()

    def category_hierarchy(self) -> dict[str, list[Category]]:
        """{"root": top-level categories, parent_name: [children], ...}"""
        hierarchy: dict[str, list[Category]] = {"root": []}
        for cat in self._snapshot:
            if cat.parent:
                hierarchy.setdefault(cat.parent, []).append(cat)
            else:
                hierarchy["root"].append(cat)
        return hierarchy


def _stored_enrichment(row: Transaction) -> Enrichment:
    if not row.enrichment:
        return BankEnrichment()
    try:
        return enrichment_from_dict(row.source_kind, json.loads(row.enrichment))
    except (ValueError, TypeError) as e:
        logger.warning("Unreadable enrichment on transaction %s: %s", row.id, e)
        return BankEnrichment()


def seed_categories(repo: Repository, config: Config) -> int:
    """Insert categories from categories.yaml that don't exist yet.

    Returns the number of categories created.
    """
    created = 0
    for entry in config.categories:
        name = (entry.get("name") or "").strip()
        if not name:
            logger.warning("Skipping category entry without a name: %r", entry)
            continue
        if repo.get_category_by_name(name) is not None:
            continue
        repo.insert_category(Category(
            name=name,
            parent=entry.get("parent"),
            keywords=[str(k) for k in entry.get("keywords") or []],
        ))
        created += 1
    if created:
        logger.info("Seeded %d categories", created)
    return created
