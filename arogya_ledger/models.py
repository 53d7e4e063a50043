from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field

CHANNEL_NEW_TRANSACTION = "new-transaction"
CHANNEL_STATS_UPDATE = "stats-update"
CHANNEL_TRANSACTIONS_UPDATE = "transactions-update"


class TransactionType(str, Enum):
    ADD_RECORD = "ADD_RECORD"
    VERIFY_INTEGRITY = "VERIFY_INTEGRITY"
    DECRYPT_RECORD = "DECRYPT_RECORD"
    QUERY_RECORD = "QUERY_RECORD"
    AUDIT_ACCESS = "AUDIT_ACCESS"
    CONSENT_VERIFY = "CONSENT_VERIFY"


SYNTHETIC_TYPES = (
    TransactionType.QUERY_RECORD,
    TransactionType.AUDIT_ACCESS,
    TransactionType.CONSENT_VERIFY,
)


class TransactionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    VALID = "VALID"
    TAMPERED = "TAMPERED"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value

    if isinstance(value, Mapping):
        return {str(key): to_json_safe(raw) for key, raw in value.items()}

    if isinstance(value, (list, tuple, set)):
        return [to_json_safe(item) for item in value]

    if hasattr(value, "to_dict") and callable(value.to_dict):
        return to_json_safe(value.to_dict())

    return str(value)


@dataclass(frozen=True, slots=True)
class Transaction:
    """One ledger activity record; never mutated after creation."""

    id: str
    type: TransactionType
    record_id: str
    timestamp: str
    status: TransactionStatus
    details: Optional[str] = None
    patient_name: Optional[str] = None
    condition: Optional[str] = None
    hash: Optional[str] = None
    encrypted: Optional[bool] = None
    automated: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "recordId": self.record_id,
            "timestamp": self.timestamp,
            "status": self.status.value,
        }
        optional = {
            "details": self.details,
            "patientName": self.patient_name,
            "condition": self.condition,
            "hash": self.hash,
            "encrypted": self.encrypted,
            "automated": self.automated,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload


@dataclass(slots=True)
class LedgerStats:
    total_records: int = 50
    encrypted_records: int = 50
    verified_records: int = 50
    active_nodes: int = 5
    total_transactions: int = 150
    network_health: str = "Healthy"

    def copy(self) -> "LedgerStats":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRecords": self.total_records,
            "encryptedRecords": self.encrypted_records,
            "verifiedRecords": self.verified_records,
            "activeNodes": self.active_nodes,
            "totalTransactions": self.total_transactions,
            "networkHealth": self.network_health,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "LedgerStats":
        defaults = cls()
        return cls(
            total_records=_coerce_int(raw.get("totalRecords"), default=defaults.total_records),
            encrypted_records=_coerce_int(raw.get("encryptedRecords"), default=defaults.encrypted_records),
            verified_records=_coerce_int(raw.get("verifiedRecords"), default=defaults.verified_records),
            active_nodes=_coerce_int(raw.get("activeNodes"), default=defaults.active_nodes),
            total_transactions=_coerce_int(raw.get("totalTransactions"), default=defaults.total_transactions),
            network_health=str(raw.get("networkHealth") or defaults.network_health),
        )


@dataclass(frozen=True, slots=True)
class TransactionInput:
    """Mutation request handed to ``Ledger.record``."""

    type: TransactionType
    record_id: Optional[str] = None
    patient_name: Optional[str] = None
    condition: Optional[str] = None


class AddRecordRequest(BaseModel):
    recordId: str = Field(min_length=1)
    patientName: str = Field(min_length=1)
    condition: str = Field(min_length=1)

    class Config:
        extra = "ignore"

    def to_input(self) -> TransactionInput:
        return TransactionInput(
            type=TransactionType.ADD_RECORD,
            record_id=self.recordId,
            patient_name=self.patientName,
            condition=self.condition,
        )


class RecordRefRequest(BaseModel):
    recordId: str = Field(min_length=1)

    class Config:
        extra = "ignore"

    def to_input(self, tx_type: TransactionType) -> TransactionInput:
        return TransactionInput(type=tx_type, record_id=self.recordId)


class StreamEnvelope(BaseModel):
    event: str
    timestamp: str = Field(default_factory=utc_now_iso)
    data: Any = None

    class Config:
        extra = "ignore"

    @classmethod
    def build(cls, *, event: str, data: Any, timestamp: Optional[str] = None) -> "StreamEnvelope":
        return cls(
            event=str(event),
            timestamp=timestamp or utc_now_iso(),
            data=to_json_safe(data),
        )


def _coerce_int(value: Any, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
