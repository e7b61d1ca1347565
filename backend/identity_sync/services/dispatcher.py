"""
Dispatcher for classified Clerk webhook events.

Routes each event to its reconciliation handler, applies the resulting
mutation plan to the Local Identity Store and reports one outcome:

- applied: mutations committed
- noop: event recognised (or deliberately ignored) and needs no change
- retryable_failure: a referenced record is not present yet, or the store
  timed out / lost its connection; the sender should redeliver later
- permanent_failure: malformed event or the store rejected a write for a
  non-transient reason; redelivery cannot help

The dispatcher never retries internally. Retry and backoff belong to the
webhook sender's redelivery policy.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from identity_sync.errors import (
    EventClassificationError,
    MissingReferenceError,
    StoreError,
    StoreTransientError,
)
from identity_sync.repositories.identity_store import IdentityStore
from identity_sync.services.mutations import Delete, Mutation, ReconciliationKind, Upsert
from identity_sync.services.reconciliation import reconcile
from identity_sync.webhooks.events import ClerkEvent, classify_payload

logger = logging.getLogger(__name__)


class DispatchStatus(str, enum.Enum):
    APPLIED = "applied"
    NOOP = "noop"
    RETRYABLE_FAILURE = "retryable_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass(frozen=True)
class DispatchOutcome:
    """
    Observable result of dispatching one event.

    applied lists the mutations that are durably committed; pending lists
    the ones that are not. In atomic mode a failure rolls everything back,
    so applied is empty and pending holds the whole plan.
    """
    status: DispatchStatus
    event_type: Optional[str] = None
    reason: Optional[str] = None
    applied: Tuple[str, ...] = ()
    pending: Tuple[str, ...] = ()

    @property
    def is_success(self) -> bool:
        return self.status in (DispatchStatus.APPLIED, DispatchStatus.NOOP)

    @property
    def is_retryable(self) -> bool:
        return self.status == DispatchStatus.RETRYABLE_FAILURE


class EventDispatcher:
    """
    Applies reconciliation plans against an injected IdentityStore.

    Args:
        store: Local Identity Store handle (one session per dispatcher)
        atomic: Apply the whole plan in one transaction (default). With
            atomic=False each mutation is committed on its own, for stores
            without multi-statement transactions; a failure then reports
            which mutations already landed.
        clock: Returns "now" for insert-only timestamps (tests pin it)
    """

    def __init__(
        self,
        store: IdentityStore,
        atomic: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.atomic = atomic
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def dispatch_payload(self, raw_body: bytes) -> DispatchOutcome:
        """
        Classify an already verified raw body and dispatch it.

        Classification errors become permanent failures, logged with the
        event type and external id for manual remediation.
        """
        try:
            event = classify_payload(raw_body)
        except EventClassificationError as e:
            logger.error(
                "Clerk webhook classification failed",
                extra={
                    "event_type": e.event_type,
                    "external_id": e.external_id,
                    "error": e.message,
                },
            )
            return DispatchOutcome(
                status=DispatchStatus.PERMANENT_FAILURE,
                event_type=e.event_type,
                reason=e.message,
            )
        return self.dispatch(event)

    def dispatch(self, event: ClerkEvent) -> DispatchOutcome:
        """
        Dispatch one classified event.

        Args:
            event: Classified Clerk event

        Returns:
            DispatchOutcome describing what happened
        """
        event_type = event.event_type

        try:
            reconciliation = reconcile(event, self.store, self._clock())
        except StoreError as e:
            self.store.rollback()
            return self._store_failure(event_type, e, applied=[], pending=[])

        if reconciliation.kind == ReconciliationKind.NOOP:
            self.store.rollback()
            logger.info(
                "Clerk webhook required no change",
                extra={"event_type": event_type, "reason": reconciliation.reason},
            )
            return DispatchOutcome(
                status=DispatchStatus.NOOP,
                event_type=event_type,
                reason=reconciliation.reason,
            )

        if reconciliation.kind == ReconciliationKind.MISSING_REFERENCE:
            self.store.rollback()
            logger.warning(
                "Clerk webhook references a record not synced yet",
                extra={"event_type": event_type, "reason": reconciliation.reason},
            )
            return DispatchOutcome(
                status=DispatchStatus.RETRYABLE_FAILURE,
                event_type=event_type,
                reason=reconciliation.reason,
                pending=tuple(m.describe() for m in reconciliation.mutations),
            )

        return self._apply_plan(event_type, reconciliation.mutations)

    # =========================================================================
    # Plan application
    # =========================================================================

    def _apply_plan(self, event_type: str, mutations: Tuple[Mutation, ...]) -> DispatchOutcome:
        committed: List[str] = []
        uncommitted: List[str] = []

        for index, mutation in enumerate(mutations):
            remaining = [m.describe() for m in mutations[index:]]
            try:
                self._apply(mutation)
                if not self.atomic:
                    self.store.commit()
                    committed.append(mutation.describe())
                else:
                    uncommitted.append(mutation.describe())
            except MissingReferenceError as e:
                self.store.rollback()
                logger.warning(
                    "Clerk webhook reference disappeared while applying",
                    extra={"event_type": event_type, "reason": e.message},
                )
                return DispatchOutcome(
                    status=DispatchStatus.RETRYABLE_FAILURE,
                    event_type=event_type,
                    reason=e.message,
                    applied=tuple(committed),
                    pending=tuple(uncommitted + remaining),
                )
            except StoreError as e:
                self.store.rollback()
                return self._store_failure(
                    event_type, e, applied=committed, pending=uncommitted + remaining
                )

        if self.atomic:
            try:
                self.store.commit()
            except StoreError as e:
                self.store.rollback()
                return self._store_failure(event_type, e, applied=[], pending=uncommitted)
            committed = uncommitted

        logger.info(
            "Applied Clerk webhook",
            extra={"event_type": event_type, "mutations": committed},
        )
        return DispatchOutcome(
            status=DispatchStatus.APPLIED,
            event_type=event_type,
            applied=tuple(committed),
        )

    def _apply(self, mutation: Mutation) -> None:
        if isinstance(mutation, Upsert):
            self.store.upsert(
                mutation.table,
                mutation.key,
                mutation.fields,
                mutation.insert_fields,
            )
        elif isinstance(mutation, Delete):
            self.store.delete_where(mutation.table, **mutation.where)
        else:
            raise TypeError(f"Unsupported mutation: {mutation!r}")

    @staticmethod
    def _store_failure(
        event_type: str,
        error: StoreError,
        applied: List[str],
        pending: List[str],
    ) -> DispatchOutcome:
        retryable = isinstance(error, StoreTransientError)
        log = logger.warning if retryable else logger.error
        log(
            "Store error while applying Clerk webhook",
            extra={
                "event_type": event_type,
                "error": str(error),
                "retryable": retryable,
                "applied": applied,
                "pending": pending,
            },
            exc_info=not retryable,
        )
        return DispatchOutcome(
            status=DispatchStatus.RETRYABLE_FAILURE if retryable else DispatchStatus.PERMANENT_FAILURE,
            event_type=event_type,
            reason=str(error),
            applied=tuple(applied),
            pending=tuple(pending),
        )
