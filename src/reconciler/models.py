"""Row types and intermediate results passed between reconciler components."""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Optional, Union


@dataclass(frozen=True)
class PendingSignature:
    """A submitted signature that has not been validated yet."""

    sid: int
    secret_validation_key: str
    signature_source_api_key: Optional[str]
    timestamp_petition_close: Optional[datetime]
    timestamp_validation_close: datetime
    petition_id: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    zip: Optional[str]
    email: Optional[str]
    signup: bool
    timestamp_validation_email_sent: Optional[datetime]
    timestamp_submitted: Optional[datetime]

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "PendingSignature":
        return cls(**{name: record[name] for name in PENDING_SIGNATURE_COLUMNS})

    def as_tuple(self) -> tuple[Any, ...]:
        return tuple(getattr(self, name) for name in PENDING_SIGNATURE_COLUMNS)


@dataclass(frozen=True)
class Validation:
    """A validation record produced by the validation pipeline."""

    vid: int
    secret_validation_key: str
    timestamp_validated: Optional[datetime]
    timestamp_validation_close: datetime
    client_ip: Optional[str]
    petition_id: Optional[str]

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Validation":
        return cls(**{name: record[name] for name in VALIDATION_COLUMNS})

    def as_tuple(self) -> tuple[Any, ...]:
        return tuple(getattr(self, name) for name in VALIDATION_COLUMNS)


# Column order used for every SELECT and archive INSERT.
PENDING_SIGNATURE_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(PendingSignature))
VALIDATION_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(Validation))


def validation_window_closed(row: Union[PendingSignature, Validation], horizon: datetime) -> bool:
    """True when the row's validation window closed strictly before the horizon."""
    return row.timestamp_validation_close < horizon


@dataclass(frozen=True)
class RunContext:
    """Diagnostic identifiers for one run. They never change behavior."""

    job_id: str
    server_name: str
    worker_name: str

    @property
    def suffix(self) -> str:
        return f"job {self.job_id} on {self.server_name}/{self.worker_name}"

    def as_log_context(self) -> dict[str, str]:
        return {"job_id": self.job_id, "server": self.server_name, "worker": self.worker_name}


@dataclass(frozen=True)
class InvalidSignatureSelection:
    """Pending signatures captured once for both the archive and the delete."""

    horizon: datetime
    rows: tuple[PendingSignature, ...]

    @property
    def sids(self) -> list[int]:
        return [row.sid for row in self.rows]

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class OrphanedValidationSelection:
    """Orphaned validations and their secret keys, captured once per run."""

    horizon: datetime
    rows: tuple[Validation, ...]

    @property
    def secret_keys(self) -> list[str]:
        # dict.fromkeys keeps first-seen order while dropping duplicates
        return list(dict.fromkeys(row.secret_validation_key for row in self.rows))

    def __len__(self) -> int:
        return len(self.rows)


@dataclass
class StepResult:
    """Outcome of one archive-and-delete sub-step."""

    name: str
    selected: int = 0
    archived: int = 0
    deleted: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class RunReport:
    """Outcome of a whole reconciliation run."""

    context: RunContext
    horizon: Optional[datetime] = None
    archiving_enabled: bool = True
    steps: list[StepResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and all(step.succeeded for step in self.steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.context.job_id,
            "server": self.context.server_name,
            "worker": self.context.worker_name,
            "horizon": self.horizon.isoformat() if self.horizon else None,
            "archiving_enabled": self.archiving_enabled,
            "success": self.succeeded,
            "error": self.error,
            "steps": [
                {
                    "name": step.name,
                    "selected": step.selected,
                    "archived": step.archived,
                    "deleted": step.deleted,
                    "error": step.error,
                }
                for step in self.steps
            ],
        }
