"""Submission of fiscal documents to the tax authority.

The coordinator owns the document state machine. Each step is a
compare-and-set on the document row, and no database transaction is open
while the authority is being called, so any number of workers may deliver the
same document concurrently: exactly one wins the claim, the others see a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from opensri.core.documents.state import (
    AWAITING_REVIEW,
    IN_FLIGHT,
    REJECTION_STATUSES,
    sources_for,
    transition_sources,
)
from opensri.core.events.base import EventBus
from opensri.core.events.document_events import (
    DocumentAuthorizedEvent,
    DocumentDefinitivelyFailedEvent,
    DocumentRejectedEvent,
)
from opensri.core.submission.scheduler import RetryScheduler
from opensri.exceptions import OpenSRIError, PermanentAuthorityError, TransientAuthorityError
from opensri.sri.client import AuthorityResponse, TaxAuthorityClient
from opensri.storage.database.models import DocumentStatus, FiscalDocument
from opensri.storage.documents import SQLAlchemyDocumentStore
from opensri.utils.datetime import utc_now
from opensri.utils.logging import get_logger
from opensri.utils.retry import DEFAULT_RETRY_POLICY, RetryPolicy

logger = get_logger(__name__)

STALE_SUBMISSION_MESSAGE = "Submission interrupted before the authority answered"


@dataclass
class PollSummary:
    """Outcome of a ``poll_pending`` sweep."""

    checked: int = 0
    authorized: int = 0
    rejected: int = 0
    failed: int = 0
    still_pending: int = 0
    errors: list[int] = field(default_factory=list)


class SubmissionCoordinator:
    """Drives documents from DRAFT to a terminal authority decision."""

    def __init__(
        self,
        store: SQLAlchemyDocumentStore,
        client: TaxAuthorityClient,
        scheduler: RetryScheduler,
        event_bus: EventBus,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    ):
        self.store = store
        self.client = client
        self.scheduler = scheduler
        self.event_bus = event_bus
        self.policy = policy

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, document_id: int) -> DocumentStatus:
        """Submit a DRAFT or retryable FAILED document.

        Any other status makes this a no-op that returns the current status,
        so duplicate event deliveries and late retry timers are harmless.

        Raises:
            RecordNotFoundError: If the document does not exist
        """
        if not self.store.claim_for_submission(
            document_id, self.policy.max_retries, sources_for(DocumentStatus.SENT)
        ):
            current = self.store.get(document_id)
            logger.info(
                "submission_skipped",
                document_id=document_id,
                status=current.status.value,
                retry_count=current.retry_count,
            )
            return current.status

        document = self.store.get(document_id)
        logger.info(
            "submission_claimed",
            document_id=document_id,
            document_number=document.document_number,
            attempt=document.retry_count + 1,
        )

        try:
            response = self.client.submit(document)
        except PermanentAuthorityError as e:
            return self._reject(
                document,
                DocumentStatus.REJECTED,
                e.authority_message or e.message,
                source=DocumentStatus.SENT,
            )
        except TransientAuthorityError as e:
            return self._fail(document, e.message)
        except Exception as e:
            # Unknown client failure: the document must not stay SENT
            logger.error(
                "submission_unexpected_error",
                document_id=document_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return self._fail(document, f"Unexpected submission error: {e}")

        return self._apply(document, response, source=DocumentStatus.SENT)

    def can_retry(self, document: FiscalDocument) -> bool:
        """FAILED with retries left."""
        return document.status is DocumentStatus.FAILED and self.policy.can_retry(
            document.retry_count
        )

    # ------------------------------------------------------------------
    # Status polling
    # ------------------------------------------------------------------

    def check_status(self, document_id: int) -> DocumentStatus:
        """Ask the authority for the decision on an accepted document.

        Transient errors leave the document untouched and do not count as a
        failed attempt.

        Raises:
            RecordNotFoundError: If the document does not exist
            PermanentAuthorityError: If the authority refuses the query
        """
        document = self.store.get(document_id)
        if document.status not in IN_FLIGHT or not document.access_key:
            logger.debug(
                "status_check_skipped",
                document_id=document_id,
                status=document.status.value,
                has_access_key=bool(document.access_key),
            )
            return document.status

        try:
            response = self.client.check_status(document.access_key, document.kind)
        except TransientAuthorityError as e:
            logger.warning(
                "status_check_transient_error",
                document_id=document_id,
                access_key=document.access_key,
                error=e.message,
            )
            return document.status

        if response.access_key is None:
            response.access_key = document.access_key
        return self._apply(document, response, source=document.status)

    def poll_pending(self) -> PollSummary:
        """Check every document awaiting an authority decision."""
        summary = PollSummary()
        for document_id in self.store.ids_in_status(AWAITING_REVIEW):
            summary.checked += 1
            try:
                status = self.check_status(document_id)
            except OpenSRIError as e:
                logger.error("status_poll_failed", document_id=document_id, error=str(e))
                summary.errors.append(document_id)
                continue
            except Exception as e:
                logger.error(
                    "status_poll_failed",
                    document_id=document_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                summary.errors.append(document_id)
                continue

            if status is DocumentStatus.AUTHORIZED:
                summary.authorized += 1
            elif status in REJECTION_STATUSES:
                summary.rejected += 1
            elif status in (DocumentStatus.FAILED, DocumentStatus.DEFINITIVELY_FAILED):
                summary.failed += 1
            else:
                summary.still_pending += 1

        logger.info(
            "status_poll_completed",
            checked=summary.checked,
            authorized=summary.authorized,
            rejected=summary.rejected,
            failed=summary.failed,
            still_pending=summary.still_pending,
            errors=len(summary.errors),
        )
        return summary

    def recover_stale_submissions(self, older_than: timedelta | datetime) -> list[int]:
        """Send SENT documents abandoned by a crashed worker through the failure path.

        Returns:
            Ids of the recovered documents
        """
        cutoff = utc_now() - older_than if isinstance(older_than, timedelta) else older_than
        recovered = []
        for document_id in self.store.stale_submission_ids(cutoff):
            document = self.store.get(document_id)
            logger.warning(
                "stale_submission_detected",
                document_id=document_id,
                updated_at=str(document.updated_at),
            )
            self._fail(document, STALE_SUBMISSION_MESSAGE)
            recovered.append(document_id)
        return recovered

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _apply(
        self,
        document: FiscalDocument,
        response: AuthorityResponse,
        source: DocumentStatus,
    ) -> DocumentStatus:
        status = response.status

        if status is DocumentStatus.AUTHORITY_ERROR:
            return self._fail(
                document,
                response.message or "Tax authority reported a processing error",
                source=source,
            )

        if status in REJECTION_STATUSES:
            return self._reject(
                document,
                status,
                response.message,
                source=source,
                response=response,
            )

        if not response.access_key:
            return self._fail(
                document,
                "Authority accepted the document without an access key",
                source=source,
            )

        if status is DocumentStatus.AUTHORIZED:
            return self._authorize(document, response, source)

        if status in AWAITING_REVIEW:
            if status is document.status:
                return status
            moved = self.store.transition(
                document.id,
                transition_sources(source, status, document.id),
                status,
                access_key=response.access_key,
                authority_response=response.raw_json(),
            )
            if not moved:
                return self._lost_race(document, status)
            logger.info(
                "document_awaiting_authority",
                document_id=document.id,
                status=status.value,
                access_key=response.access_key,
            )
            return status

        # Statuses the authority never reports (DRAFT, SENT, FAILED, ...)
        logger.error(
            "unexpected_authority_status",
            document_id=document.id,
            status=status.value,
        )
        return self._fail(
            document,
            f"Unexpected authority status {status.value}",
            source=source,
        )

    def _authorize(
        self,
        document: FiscalDocument,
        response: AuthorityResponse,
        source: DocumentStatus,
    ) -> DocumentStatus:
        moved = self.store.transition(
            document.id,
            transition_sources(source, DocumentStatus.AUTHORIZED, document.id),
            DocumentStatus.AUTHORIZED,
            access_key=response.access_key,
            authorization_number=response.authorization_number,
            authorized_at=utc_now(),
            authority_error_message=None,
            authority_response=response.raw_json(),
        )
        if not moved:
            return self._lost_race(document, DocumentStatus.AUTHORIZED)

        logger.info(
            "document_authorized",
            document_id=document.id,
            document_number=document.document_number,
            authorization_number=response.authorization_number,
        )
        self.event_bus.publish(
            DocumentAuthorizedEvent(
                document_id=document.id,
                document_number=document.document_number,
                authorization_number=response.authorization_number,
                access_key=response.access_key,
            )
        )
        return DocumentStatus.AUTHORIZED

    def _reject(
        self,
        document: FiscalDocument,
        status: DocumentStatus,
        message: str | None,
        source: DocumentStatus,
        response: AuthorityResponse | None = None,
    ) -> DocumentStatus:
        fields = {"authority_error_message": message or "Rejected by the tax authority"}
        if response is not None:
            fields["authority_response"] = response.raw_json()
            if response.access_key:
                fields["access_key"] = response.access_key

        if not self.store.transition(
            document.id, transition_sources(source, status, document.id), status, **fields
        ):
            return self._lost_race(document, status)

        logger.warning(
            "document_rejected",
            document_id=document.id,
            document_number=document.document_number,
            status=status.value,
            message=message,
        )
        self.event_bus.publish(
            DocumentRejectedEvent(
                document_id=document.id,
                document_number=document.document_number,
                status=status.value,
                message=message,
            )
        )
        return status

    def _fail(
        self,
        document: FiscalDocument,
        message: str,
        source: DocumentStatus = DocumentStatus.SENT,
    ) -> DocumentStatus:
        """Record a failed attempt, then schedule a retry or give up."""
        failed = self.store.record_failure(
            document.id,
            message,
            transition_sources(source, DocumentStatus.FAILED, document.id),
        )
        if failed is None:
            return self._lost_race(document, DocumentStatus.FAILED)

        if self.policy.can_retry(failed.retry_count):
            delay = self.policy.delay_for(failed.retry_count)
            logger.warning(
                "submission_failed_retry_scheduled",
                document_id=document.id,
                retry_count=failed.retry_count,
                max_retries=self.policy.max_retries,
                delay_seconds=delay,
                error=message,
            )
            self.scheduler.schedule_retry(document.id, delay)
            return DocumentStatus.FAILED

        if not self.store.transition(
            document.id,
            transition_sources(
                DocumentStatus.FAILED, DocumentStatus.DEFINITIVELY_FAILED, document.id
            ),
            DocumentStatus.DEFINITIVELY_FAILED,
        ):
            return self._lost_race(document, DocumentStatus.DEFINITIVELY_FAILED)

        logger.critical(
            "document_definitively_failed",
            document_id=document.id,
            document_number=document.document_number,
            retry_count=failed.retry_count,
            last_error=message,
        )
        self.event_bus.publish(
            DocumentDefinitivelyFailedEvent(
                document_id=document.id,
                document_number=document.document_number,
                retry_count=failed.retry_count,
                last_error=message,
            )
        )
        return DocumentStatus.DEFINITIVELY_FAILED

    def _lost_race(self, document: FiscalDocument, attempted: DocumentStatus) -> DocumentStatus:
        current = self.store.get(document.id)
        logger.warning(
            "document_transition_lost",
            document_id=document.id,
            attempted=attempted.value,
            current=current.status.value,
        )
        return current.status
