"""Scraping capability: the interfaces the orchestrator consumes.

The actual per-institution scraping (browser automation, vendor APIs)
lives outside this package. It is plugged in either as a BatchScraper or
as a plain single-account function wrapped by ThreadedBatchScraper.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Protocol

from fundsync.config import ScrapingSettings
from fundsync.database.models import EncryptedCredential

logger = logging.getLogger(__name__)


@dataclass
class ScrapeOptions:
    """Options passed through to the scrape function for every account."""
    start_date: date
    future_months: int = 0
    combine_installments: bool = False
    show_browser: bool = False
    timeout: int = 120
    screenshot_on_error: bool = False
    screenshot_path: str | None = None

    @classmethod
    def from_settings(cls, settings: ScrapingSettings, today: date | None = None) -> ScrapeOptions:
        today = today or date.today()
        return cls(
            start_date=today - timedelta(days=settings.days_back),
            future_months=settings.future_months,
            combine_installments=settings.combine_installments,
            show_browser=settings.show_browser,
            timeout=settings.timeout,
            screenshot_on_error=settings.screenshot_on_error,
            screenshot_path=settings.screenshot_path,
        )


@dataclass
class ScrapeRequest:
    institution_id: str
    account_alias: str
    credentials: dict[str, str] = field(repr=False)


@dataclass
class ScrapeResult:
    """Outcome of scraping one account. duration is in seconds."""
    success: bool
    transactions: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    duration: float = 0.0
    account_number: str | None = None


class BatchScraper(Protocol):
    def scrape_batch(
        self,
        requests: list[ScrapeRequest],
        options: ScrapeOptions,
        max_parallel: int,
    ) -> list[ScrapeResult]:
        """Scrape every request; results line up with requests by index."""
        ...


class CredentialStore(Protocol):
    def find_credential(
        self, user_id: str, account_alias: str
    ) -> EncryptedCredential | None:
        ...


class CredentialCipher(Protocol):
    def decrypt(self, credential: EncryptedCredential) -> dict[str, str]:
        ...


ScrapeFn = Callable[[ScrapeRequest, ScrapeOptions], ScrapeResult]


class ThreadedBatchScraper:
    """Run a single-account scrape function over a batch with a thread pool.

    At most max_parallel accounts are scraped at once. An exception raised
    for one account becomes that account's failed ScrapeResult.
    """

    def __init__(self, scrape_fn: ScrapeFn):
        self.scrape_fn = scrape_fn

    def scrape_batch(
        self,
        requests: list[ScrapeRequest],
        options: ScrapeOptions,
        max_parallel: int = 2,
    ) -> list[ScrapeResult]:
        if not requests:
            return []

        workers = max(1, min(max_parallel, len(requests)))
        results: list[ScrapeResult | None] = [None] * len(requests)
        logger.info(
            "Scraping %d account(s) with up to %d in parallel", len(requests), workers,
        )

        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self._scrape_one, req, options): idx
                for idx, req in enumerate(requests)
            }
            for future in concurrent.futures.as_completed(futures):
                results[futures[future]] = future.result()

        return results

    def _scrape_one(self, request: ScrapeRequest, options: ScrapeOptions) -> ScrapeResult:
        start = time.monotonic()
        try:
            result = self.scrape_fn(request, options)
        except Exception as e:
            duration = time.monotonic() - start
            logger.exception(
                "Scrape failed for %s (%s)", request.account_alias, request.institution_id,
            )
            return ScrapeResult(success=False, error=str(e) or type(e).__name__, duration=duration)

        if not result.duration:
            result.duration = time.monotonic() - start
        logger.info(
            "Scraped %s: success=%s, %d transaction(s) in %.1fs",
            request.account_alias, result.success, len(result.transactions), result.duration,
        )
        return result
