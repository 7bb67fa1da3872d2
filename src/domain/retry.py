"""
Retry orchestrator - Bounded, backoff-scheduled registration creation.

Decouples the caller from needing a successful gateway call within one
request/response cycle. Attempt #1 runs synchronously; later attempts are
handed to a RetryScheduler and run after the original request returned.

Retry Record States
===================

    PENDING -> SUCCESS            (attempt #1 succeeded)
    PENDING -> FAILED             (attempt #1 failed, not retryable)
    PENDING -> RETRYING -> ... -> SUCCESS | FAILED
    any non-terminal -> ABANDONED

Guarantees:
- Attempts of one record are strictly sequential (per-record lock).
- No attempt is ever issued once a record is terminal.
- Before a scheduled attempt, an active registration for the same
  (user, event) that already holds an external order is adopted as the
  success instead of calling the gateway again.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import timedelta

from .classifier import is_retryable
from .exceptions import Forbidden, RegistrationError, RetryRecordNotFound, StorageInconsistency
from .locks import KeyedLocks
from .models import (
    AttemptOutcome,
    RegistrationRequest,
    RetryAttempt,
    RetryRecord,
    RetryStatus,
    new_id,
)
from .ports import Clock, RegistrationStore, RetryRecordStore, RetryScheduler
from .registration import CreationResult

logger = logging.getLogger(__name__)

AttemptFn = Callable[[RegistrationRequest], Awaitable[CreationResult]]


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff; ``max_attempts`` counts attempt #1."""

    max_attempts: int = 3
    base_delay_ms: int = 1000
    multiplier: float = 2.0
    max_delay_ms: int = 30000

    def delay_ms(self, attempt_number: int) -> int:
        """Delay to wait after failed attempt ``attempt_number`` (1-based)."""
        delay = self.base_delay_ms * self.multiplier ** (attempt_number - 1)
        return int(min(delay, self.max_delay_ms))


@dataclass(frozen=True)
class RetryOutcome:
    """What the synchronous part of ``create_retryable`` observed."""

    record: RetryRecord
    result: CreationResult | None = None
    error: RegistrationError | None = None

    @property
    def done(self) -> bool:
        return self.record.status == RetryStatus.SUCCESS


@dataclass
class RetryService:
    """Domain service owning RetryRecords."""

    records: RetryRecordStore
    attempt: AttemptFn
    registrations: RegistrationStore
    scheduler: RetryScheduler
    clock: Clock
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    _locks: KeyedLocks = field(default_factory=KeyedLocks, init=False, repr=False)

    async def create_retryable(self, user_id: str, request: RegistrationRequest) -> RetryOutcome:
        """
        Create a retry record and run attempt #1 synchronously.

        Args:
            user_id: Requester; owner of the retry record
            request: Creation payload replayed by every attempt

        Returns:
            RetryOutcome; ``done`` is True when attempt #1 succeeded,
            otherwise the record is RETRYING (later attempts scheduled) or
            FAILED (non-retryable error)
        """
        now = self.clock.now()
        record = self.records.create(
            RetryRecord(
                id=new_id("retry"),
                user_id=user_id,
                registration_data=request,
                status=RetryStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info("Retry record created id=%s user=%s event=%s", record.id, user_id, request.event_id)

        result, error = await self._run_attempt(record.id)
        return RetryOutcome(record=self._require(record.id), result=result, error=error)

    def get_retry_record(self, retry_id: str) -> RetryRecord | None:
        return self.records.get(retry_id)

    def get_user_retry_records(self, user_id: str) -> list[RetryRecord]:
        return self.records.list_by_user(user_id)

    def get_owned_retry_record(self, retry_id: str, requester_id: str) -> RetryRecord:
        """
        Raises:
            RetryRecordNotFound: If the record does not exist
            Forbidden: If the requester does not own the record
        """
        record = self._require(retry_id)
        if record.user_id != requester_id:
            logger.warning("Forbidden retry record access id=%s requester=%s", retry_id, requester_id)
            raise Forbidden("you do not have permission to access this retry record")
        return record

    def abandon_retry(self, retry_id: str) -> RetryRecord:
        """
        Stop retrying a record. Terminal records are returned unchanged.

        Raises:
            RetryRecordNotFound: If the record does not exist
        """
        record = self._require(retry_id)
        if record.status.is_terminal:
            return record
        abandoned = self.records.save(replace(record, status=RetryStatus.ABANDONED, updated_at=self.clock.now()))
        logger.info("Retry abandoned id=%s user=%s", retry_id, record.user_id)
        return abandoned

    def cleanup_expired(self, max_age_hours: int = 24) -> int:
        """Abandon non-terminal records older than ``max_age_hours``."""
        now = self.clock.now()
        cutoff = now - timedelta(hours=max_age_hours)
        cleaned = 0
        for record in self.records.list_all():
            if not record.status.is_terminal and record.created_at < cutoff:
                self.records.save(replace(record, status=RetryStatus.ABANDONED, updated_at=now))
                cleaned += 1
        if cleaned:
            logger.info("Expired retry records abandoned count=%s max_age_hours=%s", cleaned, max_age_hours)
        return cleaned

    async def _run_scheduled(self, retry_id: str) -> None:
        await self._run_attempt(retry_id)

    async def _run_attempt(self, retry_id: str) -> tuple[CreationResult | None, RegistrationError | None]:
        async with self._locks.hold(retry_id):
            record = self._require(retry_id)
            if record.status.is_terminal:
                logger.info("Skipping attempt for terminal retry record id=%s status=%s", retry_id, record.status.value)
                return None, None

            if record.attempts and self._adopt_existing(record):
                return None, None

            attempt_number = len(record.attempts) + 1
            logger.info("Registration attempt id=%s attempt=%s", retry_id, attempt_number)

            try:
                result = await self.attempt(record.registration_data)
            except RegistrationError as e:
                if isinstance(e, StorageInconsistency):
                    record = replace(record, final_order_id=e.external_order_id)
                self._record_failure(record, attempt_number, e.code, e.message)
                return None, e
            except Exception as e:
                logger.exception("Unexpected error during registration attempt id=%s", retry_id)
                error = RegistrationError(str(e), code="RETRY_ATTEMPT_ERROR")
                self._record_failure(record, attempt_number, error.code, error.message)
                return None, error

            now = self.clock.now()
            # An abandon that landed while the gateway call was in flight stays terminal
            abandoned = self._require(retry_id).status == RetryStatus.ABANDONED
            self.records.save(
                replace(
                    record,
                    status=RetryStatus.ABANDONED if abandoned else RetryStatus.SUCCESS,
                    attempts=(
                        *record.attempts,
                        RetryAttempt(attempt_number=attempt_number, timestamp=now, outcome=AttemptOutcome.SUCCESS),
                    ),
                    final_order_id=result.order.code,
                    registration_id=result.registration.id,
                    updated_at=now,
                )
            )
            logger.info("Registration retry succeeded id=%s attempt=%s order=%s", retry_id, attempt_number, result.order.code)
            return result, None

    def _record_failure(self, record: RetryRecord, attempt_number: int, code: str, message: str) -> None:
        now = self.clock.now()
        attempts = (
            *record.attempts,
            RetryAttempt(
                attempt_number=attempt_number,
                timestamp=now,
                outcome=AttemptOutcome.FAILURE,
                error_code=code,
                error_message=message,
            ),
        )

        if self._require(record.id).status == RetryStatus.ABANDONED:
            self.records.save(replace(record, status=RetryStatus.ABANDONED, attempts=attempts, updated_at=now))
            logger.info("Retry record abandoned during attempt id=%s attempt=%s", record.id, attempt_number)
        elif is_retryable(code) and attempt_number < self.backoff.max_attempts:
            self.records.save(replace(record, status=RetryStatus.RETRYING, attempts=attempts, updated_at=now))
            delay_ms = self.backoff.delay_ms(attempt_number)
            logger.info("Scheduling registration retry id=%s next_attempt=%s delay_ms=%s", record.id, attempt_number + 1, delay_ms)
            retry_id = record.id
            self.scheduler.schedule(delay_ms / 1000, lambda: self._run_scheduled(retry_id))
        else:
            self.records.save(replace(record, status=RetryStatus.FAILED, attempts=attempts, updated_at=now))
            logger.warning(
                "Registration retry failed, giving up id=%s attempt=%s code=%s",
                record.id,
                attempt_number,
                code,
            )

    def _adopt_existing(self, record: RetryRecord) -> bool:
        request = record.registration_data
        existing = self.registrations.find_active(request.user_id, request.event_id)
        if existing is None or not existing.external_order_id or existing.created_at < record.created_at:
            return False

        now = self.clock.now()
        self.records.save(
            replace(
                record,
                status=RetryStatus.SUCCESS,
                final_order_id=existing.external_order_id,
                registration_id=existing.id,
                updated_at=now,
            )
        )
        logger.info(
            "Retry record reconciled with existing registration id=%s registration=%s order=%s",
            record.id,
            existing.id,
            existing.external_order_id,
        )
        return True

    def _require(self, retry_id: str) -> RetryRecord:
        record = self.records.get(retry_id)
        if record is None:
            raise RetryRecordNotFound(retry_id)
        return record
