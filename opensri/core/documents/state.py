"""Document lifecycle rules.

DRAFT --submit--> SENT
SENT --accepted, awaiting review--> PENDING | PROCESSING | RECEIVED
SENT | awaiting review --authorized--> AUTHORIZED
SENT | awaiting review --rejected--> REJECTED | NOT_AUTHORIZED | RETURNED
SENT | awaiting review --transient failure--> FAILED
FAILED --retries left--> SENT
FAILED --retries exhausted--> DEFINITIVELY_FAILED
"""

from opensri.exceptions import DocumentStateError
from opensri.storage.database.models import DocumentStatus

AWAITING_REVIEW = frozenset(
    {DocumentStatus.PENDING, DocumentStatus.PROCESSING, DocumentStatus.RECEIVED}
)

# Submission handed to the authority and not yet resolved
IN_FLIGHT = frozenset({DocumentStatus.SENT}) | AWAITING_REVIEW

REJECTION_STATUSES = frozenset(
    {DocumentStatus.REJECTED, DocumentStatus.NOT_AUTHORIZED, DocumentStatus.RETURNED}
)

TERMINAL_STATUSES = (
    frozenset({DocumentStatus.AUTHORIZED, DocumentStatus.DEFINITIVELY_FAILED})
    | REJECTION_STATUSES
)

# Customer data may change before authorization, never mid-submission
CUSTOMER_EDITABLE = frozenset(DocumentStatus) - IN_FLIGHT - {DocumentStatus.AUTHORIZED}

ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.DRAFT: frozenset({DocumentStatus.SENT}),
    DocumentStatus.SENT: AWAITING_REVIEW
    | REJECTION_STATUSES
    | {DocumentStatus.AUTHORIZED, DocumentStatus.FAILED},
    DocumentStatus.PENDING: AWAITING_REVIEW
    | REJECTION_STATUSES
    | {DocumentStatus.AUTHORIZED, DocumentStatus.FAILED},
    DocumentStatus.PROCESSING: AWAITING_REVIEW
    | REJECTION_STATUSES
    | {DocumentStatus.AUTHORIZED, DocumentStatus.FAILED},
    DocumentStatus.RECEIVED: AWAITING_REVIEW
    | REJECTION_STATUSES
    | {DocumentStatus.AUTHORIZED, DocumentStatus.FAILED},
    DocumentStatus.FAILED: frozenset({DocumentStatus.SENT, DocumentStatus.DEFINITIVELY_FAILED}),
}


def is_terminal(status: DocumentStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    """Whether the lifecycle allows ``current -> target``."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def sources_for(target: DocumentStatus) -> frozenset[DocumentStatus]:
    """Statuses from which ``target`` may be reached."""
    return frozenset(
        source for source, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )


def transition_sources(
    current: DocumentStatus, target: DocumentStatus, document_id: int | None = None
) -> tuple[DocumentStatus, ...]:
    """CAS precondition for moving a document last seen in ``current`` to ``target``.

    Raises:
        DocumentStateError: If the lifecycle does not allow ``current -> target``
    """
    if not can_transition(current, target):
        raise DocumentStateError(
            f"Cannot move a document from {current.value} to {target.value}",
            document_id=document_id,
            current_state=current.value,
            attempted_action=target.value,
        )
    return (current,)


STATUS_LABELS: dict[DocumentStatus, str] = {
    DocumentStatus.DRAFT: "Borrador",
    DocumentStatus.SENT: "Enviado al SRI",
    DocumentStatus.PENDING: "Pendiente",
    DocumentStatus.PROCESSING: "Procesando",
    DocumentStatus.RECEIVED: "Recibida por SRI",
    DocumentStatus.AUTHORIZED: "Autorizada",
    DocumentStatus.REJECTED: "Rechazada",
    DocumentStatus.NOT_AUTHORIZED: "No autorizada",
    DocumentStatus.RETURNED: "Devuelta",
    DocumentStatus.AUTHORITY_ERROR: "Error SRI",
    DocumentStatus.FAILED: "Fallida",
    DocumentStatus.DEFINITIVELY_FAILED: "Fallida definitivamente",
}
