"""Change notifications, decoded from the pixel NOTIFY payload.

Learn: The trigger payload is a loose JSON envelope keyed by operationType.
We decode it once, at the edge, into one of three explicit variants so the
watcher can handle every kind exhaustively instead of falling through a
default branch:

  InsertNotification  → carries the full document, no lookup needed
  UpdateNotification  → carries only the key, the row must be re-read
  OtherNotification   → delete/truncate/unknown, ignored by the watcher
"""

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Optional, Union

INSERT = "insert"
UPDATE = "update"


class MalformedNotification(ValueError):
    """Raised when a payload can't be decoded into a ChangeNotification."""


@dataclass(frozen=True)
class InsertNotification:
    operation_type: ClassVar[str] = INSERT
    document_key: str
    full_document: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UpdateNotification:
    operation_type: ClassVar[str] = UPDATE
    document_key: str


@dataclass(frozen=True)
class OtherNotification:
    operation_type: str
    document_key: Optional[str] = None


ChangeNotification = Union[InsertNotification, UpdateNotification, OtherNotification]


def _document_key(envelope: Mapping[str, Any], required: bool) -> Optional[str]:
    key = envelope.get("documentKey")
    if isinstance(key, Mapping) and key.get("_id") is not None:
        return str(key["_id"])
    if required:
        raise MalformedNotification("documentKey._id is missing")
    return None


def parse_notification(payload: Union[str, bytes, Mapping[str, Any]]) -> ChangeNotification:
    """Decode a raw NOTIFY payload (or an already-decoded dict).

    Raises MalformedNotification for invalid JSON or a missing
    operationType, documentKey (insert/update) or fullDocument (insert).
    """
    if isinstance(payload, (str, bytes)):
        try:
            envelope = json.loads(payload)
        except json.JSONDecodeError as e:
            raise MalformedNotification(f"invalid JSON payload: {e}") from e
    else:
        envelope = payload

    if not isinstance(envelope, Mapping):
        raise MalformedNotification("payload is not an object")

    operation_type = envelope.get("operationType")
    if not isinstance(operation_type, str) or not operation_type:
        raise MalformedNotification("operationType is missing")

    if operation_type == INSERT:
        full_document = envelope.get("fullDocument")
        if not isinstance(full_document, Mapping):
            raise MalformedNotification("insert without fullDocument")
        return InsertNotification(
            document_key=_document_key(envelope, required=True),
            full_document=dict(full_document),
        )

    if operation_type == UPDATE:
        return UpdateNotification(document_key=_document_key(envelope, required=True))

    return OtherNotification(
        operation_type=operation_type,
        document_key=_document_key(envelope, required=False),
    )
