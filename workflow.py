"""
Publication status workflow.

The transition table below is the intended lifecycle. By default a move
outside the table is allowed but reported as a warning; with strict mode on
it raises :class:`InvalidTransitionError`. Either way every real change is
written together with one status-history row and one ``status`` edit-log
entry, inside the caller's transaction.
"""

import logging
from typing import Optional, Union

from .audit import EditAuditLogger, FieldChange
from .base import PublicationStatus, UserRole
from .entity import Actor, PublicationRecord, TransitionResult
from .errors import ForbiddenError, InvalidTransitionError, ValidationError
from .storage.interfaces import RegistryStorageInterface

logger = logging.getLogger(__name__)

S = PublicationStatus

ALLOWED_TRANSITIONS: dict[PublicationStatus, frozenset[PublicationStatus]] = {
    S.DRAFT: frozenset({S.UNDER_REVIEW}),
    S.UNDER_REVIEW: frozenset({S.PUBLISHED, S.NEEDS_REVISION}),
    S.NEEDS_REVISION: frozenset({S.UNDER_REVIEW}),
    S.PUBLISHED: frozenset({S.ARCHIVED}),
    S.ARCHIVED: frozenset(),
}

# The only moves a professor may make, and only on their own records.
PROFESSOR_TRANSITIONS = frozenset(
    {
        (S.DRAFT, S.UNDER_REVIEW),
        (S.NEEDS_REVISION, S.UNDER_REVIEW),
    }
)

# Statuses in which the owning professor may still edit fields.
PROFESSOR_EDITABLE = frozenset({S.DRAFT, S.NEEDS_REVISION})


def parse_status(value: Union[str, PublicationStatus, None]) -> PublicationStatus:
    """
    Example:
        >>> parse_status(" Under_Review ")
        <PublicationStatus.UNDER_REVIEW: 'under_review'>
    """
    if isinstance(value, PublicationStatus):
        return value
    raw = (value or "").strip().lower()
    if not raw:
        raise ValidationError("status is required")
    try:
        return PublicationStatus(raw)
    except ValueError:
        raise ValidationError(f"unknown status: {value!r}") from None


def validate_transition(current: PublicationStatus, target: PublicationStatus, strict: bool = False) -> Optional[str]:
    """
    Check a move against the transition table.

    Returns None when the move is in the table, otherwise a warning message;
    raises instead when ``strict`` is set.
    """
    if target in ALLOWED_TRANSITIONS[current]:
        return None
    if strict:
        raise InvalidTransitionError(current.value, target.value)
    return f"transition {current.value} -> {target.value} is outside the normal workflow"


def owns(record: PublicationRecord, actor: Actor) -> bool:
    """Write access follows the submitting account; author links only feed "my records" queries."""
    return record.owner_user_id is not None and record.owner_user_id == actor.user_id


class StatusWorkflow:
    def __init__(self, storage: RegistryStorageInterface, audit: EditAuditLogger, strict: bool = False):
        self.storage = storage
        self.audit = audit
        self.strict = strict

    def check_actor(self, record: PublicationRecord, target: PublicationStatus, actor: Actor) -> None:
        if actor.is_staff:
            return
        if actor.role != UserRole.PROFESSOR or not owns(record, actor):
            raise ForbiddenError(f"user {actor.user_id} may not change the status of publication {record.pub_id}")
        if target != record.status and (record.status, target) not in PROFESSOR_TRANSITIONS:
            raise ForbiddenError(f"professors may not move a publication from {record.status.value} to {target.value}")

    def transition(
        self,
        record: PublicationRecord,
        new_status: Union[str, PublicationStatus, None],
        actor: Actor,
        note: Optional[str] = None,
    ) -> TransitionResult:
        """Apply a status change to ``record``. Must run inside a storage transaction."""
        target = parse_status(new_status)
        current = record.status
        self.check_actor(record, target, actor)

        if target == current:
            return TransitionResult(pub_id=record.pub_id, previous=current, current=current, changed=False)

        warning = validate_transition(current, target, self.strict)
        if warning:
            logger.warning("Publication %s: %s (by user %s)", record.pub_id, warning, actor.user_id)

        self.storage.publications.update(record.pub_id, {"status": target.value})
        self.storage.ledger.append_status(record.pub_id, target.value, actor.user_id, note)
        self.audit.record(record.pub_id, actor.user_id, [FieldChange("status", current, target)])
        logger.info("Publication %s status %s -> %s by user %s", record.pub_id, current.value, target.value, actor.user_id)

        return TransitionResult(pub_id=record.pub_id, previous=current, current=target, changed=True, warning=warning)
