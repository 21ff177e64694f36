"""Error taxonomy for the attestation platform.

Every error raised across a layer boundary derives from AttestationError so
inbound adapters can render it as RFC 7807 problem details.

Categories:
    - Validation: malformed input or business-rule violation
    - NotFound: referenced certificate/policy/insured does not exist
    - ExternalApi: registry/provider failure, open circuit, timeout
    - IdempotencyConflict: key reused with another request, or in flight
"""

from __future__ import annotations

from typing import Any, Optional


class AttestationError(Exception):
    """Base class for all platform errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_problem_details(self, instance: Optional[str] = None) -> dict[str, Any]:
        """Render as an RFC 7807 problem details document."""
        title = "".join(f" {c}" if c.isupper() else c for c in type(self).__name__).strip()
        problem: dict[str, Any] = {
            "type": f"https://errors.attestation-platform/{self.code}",
            "title": title,
            "status": self.status_code,
            "detail": self.message,
            "code": self.code,
        }
        if instance:
            problem["instance"] = instance
        if self.details:
            problem["details"] = self.details
        return problem


class ValidationError(AttestationError):
    """Malformed input or a business rule was violated."""

    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidTransitionError(ValidationError):
    """A status change outside the certificate state machine."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move certificate from {current} to {target}",
            {"currentStatus": current, "requestedStatus": target},
        )


class NotFoundError(AttestationError):
    """A referenced resource does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            f"{resource} with identifier {identifier} not found",
            {"resource": resource, "identifier": identifier},
        )
        self.resource = resource
        self.identifier = identifier


class ExternalApiError(AttestationError):
    """An external collaborator (registry or provider) failed."""

    code = "EXTERNAL_API_ERROR"
    status_code = 502

    def __init__(
        self,
        service: str,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, {"service": service, **(details or {})})
        self.service = service
        if code:
            self.code = code


class CircuitOpenError(ExternalApiError):
    """The circuit breaker rejected the call without attempting it."""

    def __init__(self, service: str) -> None:
        super().__init__(service, f"Circuit breaker open for {service}", "CIRCUIT_OPEN")
        self.status_code = 503


class CircuitTimeoutError(ExternalApiError):
    """The guarded call exceeded the breaker timeout."""

    def __init__(self, service: str, timeout_s: float) -> None:
        super().__init__(
            service,
            f"Call to {service} timed out after {timeout_s}s",
            "CIRCUIT_TIMEOUT",
            {"timeoutSeconds": timeout_s},
        )
        self.status_code = 504


class IdempotencyConflictError(AttestationError):
    """The idempotency key cannot be honoured for this request."""

    code = "IDEMPOTENCY_CONFLICT"
    status_code = 409

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message, {"idempotencyKey": key})
        self.key = key


class IdempotencyKeyReuseError(IdempotencyConflictError):
    """The key was first used with a different request body."""

    code = "IDEMPOTENCY_KEY_REUSED"
    status_code = 422

    def __init__(self, key: str) -> None:
        super().__init__("Idempotency key has been used with a different request", key)


class IdempotencyInFlightError(IdempotencyConflictError):
    """A request with the same key is still being processed."""

    code = "IDEMPOTENCY_IN_FLIGHT"

    def __init__(self, key: str) -> None:
        super().__init__("Request with this idempotency key is already being processed", key)


class DuplicateRecordError(AttestationError):
    """Storage rejected a row because of a uniqueness constraint."""

    code = "DUPLICATE_RECORD"
    status_code = 409

    def __init__(self, entity: str, constraint: str) -> None:
        super().__init__(
            f"{entity} violates unique constraint {constraint}",
            {"entity": entity, "constraint": constraint},
        )
        self.entity = entity
        self.constraint = constraint
