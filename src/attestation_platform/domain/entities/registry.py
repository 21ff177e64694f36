"""Policy and insured-party data mirrored from the registry.

The registry returns camelCase JSON; ``from_payload`` accepts both camelCase
and snake_case keys so records can also be rebuilt from stored snapshots.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional


def _pick(payload: Mapping[str, Any], snake: str, default: Any = None) -> Any:
    if snake in payload:
        return payload[snake]
    head, *rest = snake.split("_")
    camel = head + "".join(part.title() for part in rest)
    return payload.get(camel, default)


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()


@dataclass
class PolicyData:
    """Insurance policy as known by the registry."""
    id: str
    policy_number: str
    insured_id: str
    subscription_date: Optional[date] = None
    effective_date: Optional[date] = None
    expiration_date: Optional[date] = None
    vehicle_registration: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_usage: Optional[str] = None
    vehicle_make: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_year: Optional[int] = None
    vehicle_chassis_number: Optional[str] = None
    vehicle_motor_number: Optional[str] = None
    guarantees: dict[str, Any] = field(default_factory=dict)
    premium_amount: float = 0.0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> PolicyData:
        year = _pick(payload, "vehicle_year")
        return cls(
            id=str(_pick(payload, "id")),
            policy_number=str(_pick(payload, "policy_number")),
            insured_id=str(_pick(payload, "insured_id")),
            subscription_date=_as_date(_pick(payload, "subscription_date")),
            effective_date=_as_date(_pick(payload, "effective_date")),
            expiration_date=_as_date(_pick(payload, "expiration_date")),
            vehicle_registration=_pick(payload, "vehicle_registration"),
            vehicle_type=_pick(payload, "vehicle_type"),
            vehicle_usage=_pick(payload, "vehicle_usage"),
            vehicle_make=_pick(payload, "vehicle_make"),
            vehicle_model=_pick(payload, "vehicle_model"),
            vehicle_year=int(year) if year not in (None, "") else None,
            vehicle_chassis_number=_pick(payload, "vehicle_chassis_number"),
            vehicle_motor_number=_pick(payload, "vehicle_motor_number"),
            guarantees=dict(_pick(payload, "guarantees") or {}),
            premium_amount=float(_pick(payload, "premium_amount") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("subscription_date", "effective_date", "expiration_date"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class InsuredData:
    """Insured party (individual or company) as known by the registry."""
    id: str
    first_name: str
    last_name: str
    type: str = "individual"
    email: Optional[str] = None
    phone: Optional[str] = None
    profession: Optional[str] = None
    company_registration: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_individual(self) -> bool:
        return self.type == "individual"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> InsuredData:
        return cls(
            id=str(_pick(payload, "id")),
            first_name=_pick(payload, "first_name", "") or "",
            last_name=_pick(payload, "last_name", "") or "",
            type=_pick(payload, "type", "individual") or "individual",
            email=_pick(payload, "email"),
            phone=_pick(payload, "phone"),
            profession=_pick(payload, "profession"),
            company_registration=_pick(payload, "company_registration"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
