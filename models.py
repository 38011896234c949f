from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Transaction:
    external_reference: str
    amount: int
    phone_number: str = ""
    status: str = ""
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)
    id: str = field(default_factory=lambda: generate_id("txn"))
    mpesa_receipt_number: str = ""
    checkout_request_id: str = ""
    merchant_request_id: str = ""
    result_code: int = 0
    result_description: str = ""

    @property
    def created_at_timestamp(self) -> int:
        return int(_aware(self.created_at).timestamp())

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Transaction":
        names = {f.name for f in fields(cls)}
        values = {key: value for key, value in row.items() if key in names and value is not None}
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _aware(self.created_at).isoformat()
        data["updated_at"] = _aware(self.updated_at).isoformat()
        return data


@dataclass
class User:
    id: str
    username: str
    email: str
    plan: str = ""
    plan_name: str = ""
    amount: int = 0
    price: str = ""
    duration: str = ""
    phone_number: str = ""
    expire_duration: int = 0
    expiry_timestamp: int = 0
    updated_at: datetime = field(default_factory=now_utc)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "User":
        names = {f.name for f in fields(cls)}
        values = {key: value for key, value in row.items() if key in names and value is not None}
        return cls(**values)

    @property
    def has_complete_plan(self) -> bool:
        return (
            self.plan not in {"", "free"}
            and bool(self.plan_name)
            and self.expiry_timestamp != 0
        )


@dataclass(frozen=True)
class PlanUpdate:
    """Field mask for a user update: only non-None fields are written."""

    plan: str | None = None
    plan_name: str | None = None
    amount: int | None = None
    price: str | None = None
    duration: str | None = None
    phone_number: str | None = None
    expire_duration: int | None = None
    expiry_timestamp: int | None = None
    updated_at: datetime | None = None

    def as_fields(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}
