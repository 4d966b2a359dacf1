"""
Field-level edit auditing.

Each update is diffed against the stored record and one edit-log entry is
written per field whose *normalized* value changed. Audit writes run in a
savepoint inside the caller's transaction: if they fail, the failure is
logged and the update itself still commits.

Normalization rules (see :func:`normalize_value`):

- ``None`` and ``""`` are the same value
- booleans render as ``true`` / ``false``
- enums render as their value
- everything else is ``str()``
"""

import logging
from enum import Enum
from typing import Any, Iterable, Mapping, NamedTuple, Optional

from .base import utcnow
from .entity import AbstractEdit, EditActivity, EditLogEntry, VersionDiffRow
from .errors import ValidationError
from .storage.interfaces import RegistryStorageInterface

logger = logging.getLogger(__name__)

_UNSET = object()


class FieldChange(NamedTuple):
    field: str
    old: Any
    new: Any


def normalize_value(value: Any) -> str:
    """
    Comparison form of a field value.

    Example:
        >>> normalize_value(None) == normalize_value("")
        True
        >>> normalize_value(True), normalize_value(2021)
        ('true', '2021')
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def stored_value(value: Any) -> Optional[str]:
    """Edit-log form of a field value; null stays null."""
    if value is None:
        return None
    return normalize_value(value)


def compute_changes(before: Mapping[str, Any], payload: Mapping[str, Any]) -> list[FieldChange]:
    """Fields of ``payload`` that exist in ``before`` and differ after normalization."""
    changes = []
    for field, new in payload.items():
        if field not in before:
            continue
        old = before[field]
        if normalize_value(old) != normalize_value(new):
            changes.append(FieldChange(field, old, new))
    return changes


def apply_abstract_edit(current: Optional[str], edit: Optional[AbstractEdit] = None, replace: Any = _UNSET) -> Optional[str]:
    """
    Materialize an abstract from a replacement and/or incremental edit.

    ``replace`` (when passed, even as None) becomes the base text; the edit
    operations then apply in order prepend, append, delete the first
    occurrence of ``edit.delete``, delete ``[delete_from, delete_to)``.
    A blank result becomes None.

    Example:
        >>> apply_abstract_edit("middle", AbstractEdit(prepend="start ", append=" end"))
        'start middle end'
        >>> apply_abstract_edit("abc", AbstractEdit(delete_from=0, delete_to=3)) is None
        True
    """
    text = current or ""
    if replace is not _UNSET:
        text = replace or ""

    if edit is not None:
        if edit.prepend is not None:
            text = edit.prepend + text
        if edit.append is not None:
            text = text + edit.append
        if edit.delete:
            index = text.find(edit.delete)
            if index >= 0:
                text = text[:index] + text[index + len(edit.delete) :]
        start, end = edit.delete_from, edit.delete_to
        # An incomplete or inverted range is ignored.
        if start is not None and end is not None and 0 <= start <= end:
            text = text[:start] + text[end:]

    return text if text.strip() else None


class EditAuditLogger:
    """Writes edit-log entries for a storage session."""

    def __init__(self, storage: RegistryStorageInterface):
        self.storage = storage

    def record(self, pub_id: int, user_id: Optional[int], changes: Iterable[FieldChange]) -> int:
        """
        Append one entry per change. Returns the number written, or 0 when the
        write failed; a failure never aborts the caller's transaction.
        """
        now = utcnow()
        entries = [
            EditLogEntry(
                pub_id=pub_id,
                user_id=user_id,
                field_name=change.field,
                old_value=stored_value(change.old),
                new_value=stored_value(change.new),
                edited_at=now,
            )
            for change in changes
        ]
        if not entries:
            return 0
        try:
            with self.storage.savepoint():
                self.storage.ledger.append_edits(entries)
        except Exception:
            logger.exception("Failed to write %d edit-log entries for publication %s", len(entries), pub_id)
            return 0
        return len(entries)

    def history(self, pub_id: int, limit: Optional[int] = None) -> list[EditLogEntry]:
        return self.storage.ledger.edit_history(pub_id, limit=limit, newest_first=True)

    def activity(self, q=None, date_from=None, date_to=None, limit: int = 200) -> list[EditActivity]:
        return self.storage.ledger.edit_activity(q=q, date_from=date_from, date_to=date_to, limit=limit)

    def diff_versions(self, pub_id: int, from_version: int, to_version: int) -> list[VersionDiffRow]:
        """
        Compare two points of a publication's edit history.

        Version ``n`` is the field snapshot after the first ``n`` edit-log
        entries (version 0 is the state before any logged edit). Only fields
        touched by the first ``to_version`` entries are reported, by name.
        """
        if from_version < 0 or to_version < 0:
            raise ValidationError("versions must be non-negative")
        if from_version > to_version:
            from_version, to_version = to_version, from_version

        entries = self.storage.ledger.edit_history(pub_id, newest_first=False)
        to_version = min(to_version, len(entries))
        from_version = min(from_version, to_version)

        fields = sorted({entry.field_name for entry in entries[:to_version]})

        old_snapshot = _snapshot(entries, from_version)
        new_snapshot = _snapshot(entries, to_version)
        return [
            VersionDiffRow(
                field=field,
                old=old_snapshot.get(field),
                next=new_snapshot.get(field),
                changed=normalize_value(old_snapshot.get(field)) != normalize_value(new_snapshot.get(field)),
            )
            for field in fields
        ]


def _snapshot(entries: list[EditLogEntry], version: int) -> dict[str, Optional[str]]:
    """Field values after applying the first ``version`` entries.

    A field not yet touched takes the ``old_value`` of its first entry.
    """
    snapshot: dict[str, Optional[str]] = {}
    for entry in entries:
        snapshot.setdefault(entry.field_name, entry.old_value)
    for entry in entries[:version]:
        snapshot[entry.field_name] = entry.new_value
    return snapshot
