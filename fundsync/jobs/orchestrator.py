"""Scrape job orchestration.

A job covers a set of accounts for one user:
  resolve accounts → decrypt → scrape (bounded parallel) →
  normalize → dedup → categorize → persist

Per-account problems (missing account, inactive account, missing
credentials, scrape errors) are recorded as failed JobResults and never
abort the rest of the job.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping
from uuid import uuid4

from fundsync.categorize.engine import CategorizationEngine
from fundsync.database.models import Account, Transaction
from fundsync.database.repository import Repository
from fundsync.ingest.canonical import CanonicalTransaction
from fundsync.ingest.normalizer import TransactionNormalizer
from fundsync.jobs.scraping import (
    BatchScraper,
    CredentialCipher,
    CredentialStore,
    ScrapeOptions,
    ScrapeRequest,
)

logger = logging.getLogger(__name__)

ACCOUNT_NOT_FOUND = "Account not found"
ACCOUNT_INACTIVE = "Account is inactive"
CREDENTIALS_NOT_FOUND = "Credentials not found"
NO_VALID_ACCOUNTS = "No valid accounts to scrape"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStateError(RuntimeError):
    """Raised when executing a job that is not pending."""


class NoActiveAccountsError(LookupError):
    """Raised when a user has no active accounts to scrape."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("No active accounts found")


@dataclass
class JobResult:
    """Outcome for one account within a job."""
    account_id: str
    account_alias: str
    institution_id: str
    success: bool
    transactions_count: int = 0  # newly saved
    duplicate_count: int = 0
    skipped_count: int = 0       # records that failed normalization
    error: str | None = None
    duration: float = 0.0        # seconds, as reported by the scraper


@dataclass
class ScrapeJob:
    user_id: str
    account_ids: list[str]
    id: str = field(default_factory=lambda: str(uuid4()))
    status: JobStatus = JobStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    results: list[JobResult] = field(default_factory=list)
    error: str | None = None

    @property
    def total_saved(self) -> int:
        return sum(r.transactions_count for r in self.results)


@dataclass
class IngestResult:
    """Result of persisting one account's raw records."""
    saved_count: int = 0
    duplicate_count: int = 0
    skipped_count: int = 0
    errors: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_transaction_row(txn: CanonicalTransaction, category_id: str | None) -> Transaction:
    """Map a canonical transaction onto its database row."""
    return Transaction(
        account_id=txn.account_id,
        txn_hash=txn.content_hash,
        date=txn.date,
        processed_date=txn.processed_date,
        original_amount=txn.original_amount,
        original_currency=txn.original_currency,
        amount=txn.charged_amount,
        currency=txn.charged_currency,
        description=txn.description,
        memo=txn.memo,
        status=txn.status,
        identifier=txn.identifier,
        installment_number=txn.installment_number,
        installment_total=txn.installment_total,
        category_id=category_id,
        source_kind=txn.source_kind.value,
        enrichment=json.dumps(txn.enrichment.to_dict(), ensure_ascii=False),
        raw_json=txn.raw_json,
    )


class ScrapeOrchestrator:
    """Create and run scrape jobs.

    Args:
        repo: Account and transaction store.
        engine: Categorization engine.
        scraper: Batch scraping capability. Only ingest_records works without it.
        cipher: Decrypts stored credentials; required along with scraper.
        normalizer: Raw record normalizer (default currency ILS if omitted).
        credentials: Credential store; defaults to repo.
    """

    def __init__(
        self,
        repo: Repository,
        engine: CategorizationEngine,
        scraper: BatchScraper | None = None,
        cipher: CredentialCipher | None = None,
        normalizer: TransactionNormalizer | None = None,
        credentials: CredentialStore | None = None,
    ):
        self.repo = repo
        self.scraper = scraper
        self.cipher = cipher
        self.engine = engine
        self.normalizer = normalizer or TransactionNormalizer()
        self.credentials = credentials if credentials is not None else repo

    def create_job(self, user_id: str, account_ids: list[str]) -> ScrapeJob:
        job = ScrapeJob(user_id=user_id, account_ids=list(account_ids))
        logger.info(
            "Scrape job %s created for user %s (%d account(s))",
            job.id, user_id, len(job.account_ids),
        )
        return job

    def execute_job(
        self,
        job: ScrapeJob,
        options: ScrapeOptions,
        max_parallel: int = 2,
    ) -> ScrapeJob:
        """Run a pending job to completion and return it.

        Raises:
            JobStateError: If the job has already been started.
            RuntimeError: If no scraper or cipher is configured.
        """
        if job.status != JobStatus.PENDING:
            raise JobStateError(f"Job {job.id} is {job.status.value}, expected pending")
        if self.scraper is None or self.cipher is None:
            raise RuntimeError("Scrape jobs need both a scraper and a credential cipher")

        job.status = JobStatus.RUNNING
        job.started_at = _utcnow()
        logger.info("Job %s started: %d account(s)", job.id, len(job.account_ids))

        # One slot per requested account so results keep the requested order
        slots: list[JobResult | None] = [None] * len(job.account_ids)

        try:
            targets: list[tuple[int, Account]] = []
            requests: list[ScrapeRequest] = []

            for idx, account_id in enumerate(job.account_ids):
                account, request, failure = self._resolve(job, account_id)
                if failure is not None:
                    slots[idx] = failure
                    continue
                targets.append((idx, account))
                requests.append(request)

            if not requests:
                job.results = [r for r in slots if r is not None]
                job.status = JobStatus.FAILED
                job.error = NO_VALID_ACCOUNTS
                job.completed_at = _utcnow()
                logger.warning("Job %s failed: no valid accounts", job.id)
                return job

            scraped = self.scraper.scrape_batch(requests, options, max_parallel)
            if len(scraped) != len(requests):
                raise RuntimeError(
                    f"Scraper returned {len(scraped)} result(s) for {len(requests)} account(s)"
                )

            for (idx, account), result in zip(targets, scraped):
                slots[idx] = self._record(account, result)

            job.results = [r for r in slots if r is not None]
            failed = [r for r in job.results if not r.success]
            if failed:
                job.status = JobStatus.FAILED
                job.error = f"Failed to scrape {len(failed)} account(s)"
            else:
                job.status = JobStatus.COMPLETED
            job.completed_at = _utcnow()

            logger.info(
                "Job %s %s: %d ok, %d failed, %d new transaction(s) in %.1fs",
                job.id, job.status.value,
                len(job.results) - len(failed), len(failed), job.total_saved,
                (job.completed_at - job.started_at).total_seconds(),
            )
            return job

        except Exception as e:
            logger.exception("Job %s failed with an unexpected error", job.id)
            job.results = [r for r in slots if r is not None]
            job.status = JobStatus.FAILED
            job.error = str(e) or type(e).__name__
            job.completed_at = _utcnow()
            return job

    def scrape_active_accounts(
        self,
        user_id: str,
        options: ScrapeOptions,
        max_parallel: int = 2,
    ) -> ScrapeJob:
        """Create and execute a job over all of a user's active accounts.

        Raises:
            NoActiveAccountsError: If the user has none.
        """
        accounts = self.repo.get_active_accounts(user_id)
        if not accounts:
            logger.warning("No active accounts found for user %s", user_id)
            raise NoActiveAccountsError(user_id)
        job = self.create_job(user_id, [a.id for a in accounts])
        return self.execute_job(job, options, max_parallel)

    def ingest_records(
        self,
        account_id: str,
        institution_id: str,
        records: list[Mapping[str, Any]],
    ) -> IngestResult:
        """Normalize, dedup, categorize and persist raw records for one account."""
        batch = self.normalizer.normalize_batch(records, institution_id, account_id)
        result = IngestResult(
            duplicate_count=batch.duplicate_count,
            skipped_count=batch.skipped_count,
            errors=list(batch.errors),
        )

        for txn in batch.transactions:
            if self.repo.find_transaction_by_hash(account_id, txn.content_hash) is not None:
                result.duplicate_count += 1
                continue
            category_id = self.engine.categorize(txn)
            if self.repo.insert_transaction(to_transaction_row(txn, category_id)):
                result.saved_count += 1
            else:
                # lost a race with a concurrent insert of the same record
                result.duplicate_count += 1

        logger.info(
            "Account %s: %d new, %d duplicate, %d skipped (of %d record(s))",
            account_id, result.saved_count, result.duplicate_count,
            result.skipped_count, len(records),
        )
        return result

    # ── Internals ───────────────────────────────────────────

    def _resolve(
        self, job: ScrapeJob, account_id: str
    ) -> tuple[Account | None, ScrapeRequest | None, JobResult | None]:
        account = self.repo.get_account(account_id)
        if account is None:
            logger.warning("Job %s: account %s not found", job.id, account_id)
            return None, None, JobResult(
                account_id=account_id, account_alias="Unknown",
                institution_id="unknown", success=False, error=ACCOUNT_NOT_FOUND,
            )

        if not account.active:
            logger.warning("Job %s: account %s is inactive, skipping", job.id, account.alias)
            return None, None, self._failure(account, ACCOUNT_INACTIVE)

        credential = self.credentials.find_credential(job.user_id, account.alias)
        if credential is None:
            logger.warning("Job %s: no credentials for account %s", job.id, account.alias)
            return None, None, self._failure(account, CREDENTIALS_NOT_FOUND)

        try:
            secrets = self.cipher.decrypt(credential)
        except Exception as e:
            # message only; never the credential itself
            logger.warning(
                "Job %s: could not decrypt credentials for %s: %s",
                job.id, account.alias, type(e).__name__,
            )
            return None, None, self._failure(account, "Failed to decrypt credentials")

        request = ScrapeRequest(
            institution_id=account.institution_id,
            account_alias=account.alias,
            credentials=secrets,
        )
        return account, request, None

    @staticmethod
    def _failure(account: Account, error: str) -> JobResult:
        return JobResult(
            account_id=account.id, account_alias=account.alias,
            institution_id=account.institution_id, success=False, error=error,
        )

    def _record(self, account: Account, scraped) -> JobResult:
        if not scraped.success:
            logger.warning("Scrape failed for %s: %s", account.alias, scraped.error)
            return JobResult(
                account_id=account.id, account_alias=account.alias,
                institution_id=account.institution_id, success=False,
                error=scraped.error or "Scrape failed", duration=scraped.duration,
            )

        ingest = self.ingest_records(account.id, account.institution_id, scraped.transactions)
        self.repo.update_last_scraped_at(account.id)
        return JobResult(
            account_id=account.id, account_alias=account.alias,
            institution_id=account.institution_id, success=True,
            transactions_count=ingest.saved_count,
            duplicate_count=ingest.duplicate_count,
            skipped_count=ingest.skipped_count,
            duration=scraped.duration,
        )
