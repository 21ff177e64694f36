"""Wire vocabulary of the attestation provider.

Field names on the payload side (``statut``, ``numero_demande``, ...) are the
provider's own and must not be renamed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Mapping, Optional


class ProviderStatusCode(IntEnum):
    """Status codes returned in the provider's ``statut`` field."""
    SUCCESS = 0
    PENDING = 121
    GENERATING = 122
    READY_FOR_TRANSFER = 123
    TRANSFERRED = 124
    # Errors
    RATE_LIMIT_EXCEEDED = -37
    UNAUTHORIZED = -36
    DUPLICATE_EXISTS = -35
    INVALID_CIRCULATION_ZONE = -34
    INVALID_SUBSCRIBER_TYPE = -33
    INVALID_INSURED_TYPE = -32
    INVALID_PROFESSION = -31
    INVALID_VEHICLE_TYPE = -30
    INVALID_VEHICLE_USAGE = -29
    INVALID_VEHICLE_GENRE = -28
    INVALID_ENERGY_SOURCE = -27
    INVALID_VEHICLE_CATEGORY = -26
    NO_INTERMEDIARY_RELATION = -25
    INVALID_INSURED_EMAIL = -24
    INVALID_SUBSCRIBER_EMAIL = -23
    INVALID_CERTIFICATE_COLOR = -22
    INVALID_SUBSCRIPTION_DATE = -21
    INVALID_EFFECT_DATE = -20
    INVALID_DATE_FORMAT = -19
    DATA_ERROR = -18
    SYSTEM_ERROR = -17
    SAVE_ERROR = -16
    EDITION_FAILED = -15
    AUTHORIZATION_ERROR = -14
    AUTHENTICATION_ERROR = -13
    INCORRECT_ACCESS_CODE = -12
    INVALID_FILE_FORMAT = -11
    INVALID_FILE_STRUCTURE = -10
    INVALID_FILE_DATA = -9
    INCORRECT_AUTHENTICATION = -8
    DATE_ERROR = -7
    CONTRACT_DURATION_ERROR = -6
    COMPANY_STOCK_ERROR = -5
    INTERMEDIARY_STOCK_ERROR = -4
    INVALID_INTERMEDIARY_CODE = -3
    INVALID_COMPANY_CODE = -2
    DUPLICATE_ERROR = -1


class OperationCode(str, Enum):
    """Operation codes for the update-status endpoint."""
    CANCEL = "109"
    SUSPEND = "120"


class DownloadType(str, Enum):
    PDF = "PDF"
    IMAGE = "IMAGE"
    QRCODE = "QRCODE"


@dataclass(frozen=True)
class DownloadLink:
    url: str
    type: DownloadType


@dataclass
class AttestationInfo:
    """One issued attestation inside a provider response."""
    numero_attestation: Optional[str] = None
    lien_telechargement: Optional[str] = None
    numero_immatriculation: Optional[str] = None
    numero_police: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AttestationInfo:
        return cls(
            numero_attestation=payload.get("numero_attestation"),
            lien_telechargement=payload.get("lien_telechargement"),
            numero_immatriculation=payload.get("numero_immatriculation"),
            numero_police=payload.get("numero_police"),
            status=payload.get("status"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class EditionResponse:
    """Response of the attestation edition endpoint."""
    statut: int
    numero_demande: Optional[str] = None
    infos: list[AttestationInfo] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.statut == ProviderStatusCode.SUCCESS

    @property
    def certificate_number(self) -> Optional[str]:
        for info in self.infos:
            if info.numero_attestation:
                return info.numero_attestation
        return None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> EditionResponse:
        return cls(
            statut=int(payload.get("statut", ProviderStatusCode.SYSTEM_ERROR)),
            numero_demande=payload.get("numero_demande"),
            infos=[AttestationInfo.from_payload(i) for i in payload.get("infos") or []],
        )


@dataclass(frozen=True)
class StatusCheckRequest:
    code_demandeur: str
    reference_demande: str

    def to_payload(self) -> dict[str, Any]:
        return {"code_demandeur": self.code_demandeur, "reference_demande": self.reference_demande}


@dataclass
class StatusCheckResponse:
    statut: int
    reference_demande: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> StatusCheckResponse:
        return cls(
            statut=int(payload.get("statut", ProviderStatusCode.SYSTEM_ERROR)),
            reference_demande=payload.get("reference_demande"),
            message=payload.get("message"),
        )


@dataclass(frozen=True)
class UpdateStatusRequest:
    code_demandeur: str
    numero_attestation: tuple[str, ...]
    code_operation: OperationCode

    def to_payload(self) -> dict[str, Any]:
        return {
            "code_demandeur": self.code_demandeur,
            "numero_attestation": list(self.numero_attestation),
            "code_operation": self.code_operation.value,
        }


@dataclass
class UpdateStatusResponse:
    statut: int
    liste_numero_attestation: list[str] = field(default_factory=list)
    message: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> UpdateStatusResponse:
        return cls(
            statut=int(payload.get("statut", ProviderStatusCode.SYSTEM_ERROR)),
            liste_numero_attestation=list(payload.get("liste_numero_attestation") or []),
            message=payload.get("message"),
        )
