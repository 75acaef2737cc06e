# models.py
# Description: Value types shared by the sync engine: queued mutations, per-kind results and history records.
#
# Imports
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional
#
# Third-Party Imports
#
# Local Imports
from .exceptions import Offline, RemoteRejected, StorageFailure, SyncError, TransportFailure, Unauthorized
#
########################################################################################################################
#
# Classes and Functions:


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serializes an aware datetime to ISO 8601 with a 'Z' suffix and microsecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds').replace('+00:00', 'Z')


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class EntityKind(Enum):
    """The entity kinds that are synchronized, in dependency order."""
    CATEGORY = "category"
    ITEM = "item"
    BILL = "bill"

    @property
    def plural(self) -> str:
        return {"category": "categories", "item": "items", "bill": "bills"}[self.value]

    @property
    def table(self) -> str:
        return self.plural

    @property
    def label(self) -> str:
        return self.plural.capitalize()

    @classmethod
    def sync_order(cls) -> List['EntityKind']:
        return [cls.CATEGORY, cls.ITEM, cls.BILL]


class OperationType(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncErrorKind(Enum):
    """Result-side mirror of the sync exception taxonomy."""
    OFFLINE = "offline"
    TRANSPORT_FAILURE = "transport_failure"
    REMOTE_REJECTED = "remote_rejected"
    UNAUTHORIZED = "unauthorized"
    STORAGE_FAILURE = "storage_failure"

    @classmethod
    def from_exception(cls, exc: SyncError) -> 'SyncErrorKind':
        mapping = {
            Offline: cls.OFFLINE,
            TransportFailure: cls.TRANSPORT_FAILURE,
            RemoteRejected: cls.REMOTE_REJECTED,
            Unauthorized: cls.UNAUTHORIZED,
            StorageFailure: cls.STORAGE_FAILURE,
        }
        for exc_type, kind in mapping.items():
            if isinstance(exc, exc_type):
                return kind
        return cls.TRANSPORT_FAILURE


class SyncPassStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED_OFFLINE = "skipped_offline"
    UNAUTHORIZED = "unauthorized"


# --- Queued mutations ---

@dataclass(frozen=True)
class MutationOperation:
    """
    A durable record of one local change awaiting (or having completed) upload.

    Concrete operations are `CreateOperation`, `UpdateOperation` and `DeleteOperation`;
    use `build_operation` or `from_row` rather than instantiating the base class.
    """
    id: int
    kind: EntityKind
    entity_id: str
    enqueued_at: datetime
    payload: Optional[Dict[str, Any]] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    synced: bool = False
    synced_at: Optional[datetime] = None

    operation_type: ClassVar[OperationType]

    def to_wire(self) -> Dict[str, Any]:
        """The batch entry sent to the server for this operation."""
        entry = {
            "operation": self.operation_type.value,
            "id": self.entity_id,
            "timestamp": to_iso(self.enqueued_at),
        }
        if self.operation_type is not OperationType.DELETE:
            entry["data"] = self.payload
        return entry

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'MutationOperation':
        payload = row.get("data")
        if isinstance(payload, str):
            payload = json.loads(payload)
        return build_operation(
            OperationType(row["operation_type"]),
            id=row["id"],
            kind=EntityKind(row["entity_type"]),
            entity_id=row["entity_id"],
            enqueued_at=parse_iso(row["enqueued_at"]),
            payload=payload,
            retry_count=row.get("retry_count") or 0,
            last_error=row.get("last_error"),
            synced=bool(row.get("synced")),
            synced_at=parse_iso(row.get("synced_at")),
        )


@dataclass(frozen=True)
class CreateOperation(MutationOperation):
    operation_type: ClassVar[OperationType] = OperationType.CREATE


@dataclass(frozen=True)
class UpdateOperation(MutationOperation):
    operation_type: ClassVar[OperationType] = OperationType.UPDATE


@dataclass(frozen=True)
class DeleteOperation(MutationOperation):
    operation_type: ClassVar[OperationType] = OperationType.DELETE


_OPERATION_CLASSES = {
    OperationType.CREATE: CreateOperation,
    OperationType.UPDATE: UpdateOperation,
    OperationType.DELETE: DeleteOperation,
}


def build_operation(operation_type: OperationType, **fields) -> MutationOperation:
    """Instantiates the concrete operation class for `operation_type`. Delete operations never carry a payload."""
    if operation_type is OperationType.DELETE:
        fields["payload"] = None
    return _OPERATION_CLASSES[operation_type](**fields)


# --- Results ---

@dataclass
class KindSyncResult:
    """Outcome of reconciling one entity kind during a pass."""
    kind: EntityKind
    success: bool
    synced: int = 0
    error: Optional[SyncErrorKind] = None
    message: Optional[str] = None


@dataclass
class SyncPassRecord:
    """One entry of the sync history log."""
    id: str
    occurred_at: datetime
    counts: Dict[EntityKind, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def display_counts(self) -> List[Dict[str, Any]]:
        """Non-zero counts as `{"name", "count"}` entries, in sync order."""
        return [
            {"name": kind.label, "count": self.counts[kind]}
            for kind in EntityKind.sync_order()
            if self.counts.get(kind, 0) > 0
        ]

    def counts_json(self) -> str:
        return json.dumps({kind.value: self.counts.get(kind, 0) for kind in EntityKind.sync_order()})

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'SyncPassRecord':
        raw_counts = json.loads(row["counts"]) if isinstance(row["counts"], str) else row["counts"]
        return cls(
            id=row["id"],
            occurred_at=parse_iso(row["occurred_at"]),
            counts={EntityKind(k): int(v) for k, v in raw_counts.items()},
        )


@dataclass
class FullSyncResult:
    """Outcome of one full sync pass across all kinds."""
    status: SyncPassStatus
    per_kind: Dict[EntityKind, KindSyncResult] = field(default_factory=dict)
    record: Optional[SyncPassRecord] = None
    coalesced: bool = False

    @property
    def success(self) -> bool:
        return self.status is SyncPassStatus.COMPLETED

    @property
    def per_kind_counts(self) -> Dict[EntityKind, int]:
        return {kind: result.synced for kind, result in self.per_kind.items()}

    @property
    def total_synced(self) -> int:
        return sum(self.per_kind_counts.values())


@dataclass
class BootstrapResult:
    """Outcome of the initial catalog download."""
    success: bool
    counts: Dict[EntityKind, int] = field(default_factory=dict)
    error: Optional[SyncErrorKind] = None
    message: Optional[str] = None
    record: Optional[SyncPassRecord] = None
    skipped: List[str] = field(default_factory=list)

    @property
    def unauthorized(self) -> bool:
        return self.error is SyncErrorKind.UNAUTHORIZED

#
# End of models.py
########################################################################################################################
