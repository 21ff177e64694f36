"""Idempotency wrapper around request handlers.

Executes a handler at most once per (idempotency key, request hash):

    key absent            -> insert pending record, execute
    hash differs          -> IdempotencyKeyReuseError, never execute
    record completed      -> replay cached response, never execute
    record pending        -> IdempotencyInFlightError, never execute
    record failed         -> claim it back to pending, execute again

The ledger's primary key closes the look-up-then-insert race: the loser of a
concurrent insert re-reads the winner's record and is answered from it.
"""

from __future__ import annotations

import asyncio
import functools
import hashlib
import json
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, TypeVar

from attestation_platform.domain.entities.certificate import utcnow
from attestation_platform.domain.entities.idempotency import (
    DEFAULT_TTL,
    IdempotencyRecord,
    IdempotencyStatus,
)
from attestation_platform.domain.exceptions import (
    DuplicateRecordError,
    IdempotencyInFlightError,
    IdempotencyKeyReuseError,
)
from attestation_platform.domain.value_objects.identifiers import create_idempotency_key
from attestation_platform.infrastructure.config import IdempotencyConfig
from attestation_platform.infrastructure.logging import get_logger
from attestation_platform.infrastructure.metrics import MetricsRegistry
from attestation_platform.ports.outbound import IdempotencyLedger

T = TypeVar("T")

logger = get_logger(__name__)

# Sentinel: the caller must run the handler itself
_EXECUTE = object()


class IdempotencyService:
    """At-most-once execution of handlers keyed by client idempotency keys.

    Args:
        ledger: Persistent idempotency ledger.
        ttl: Lifetime of a ledger record.
        metrics: Metrics registry for outcome counters.
    """

    def __init__(
        self,
        ledger: IdempotencyLedger,
        ttl: timedelta = DEFAULT_TTL,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._ledger = ledger
        self._ttl = ttl
        self._metrics = metrics

    @classmethod
    def from_config(
        cls,
        ledger: IdempotencyLedger,
        config: IdempotencyConfig,
        metrics: MetricsRegistry | None = None,
    ) -> IdempotencyService:
        return cls(ledger, ttl=timedelta(hours=config.ttl_hours), metrics=metrics)

    async def process_idempotent_request(
        self,
        key: str,
        request_hash: str,
        fn: Callable[[], Awaitable[T]],
        *,
        encode: Optional[Callable[[T], Any]] = None,
        decode: Optional[Callable[[Any], T]] = None,
    ) -> T:
        """Run ``fn`` once for ``key``/``request_hash``; replay afterwards.

        Args:
            key: Client idempotency key.
            request_hash: Fingerprint of the logical request.
            fn: Handler to execute.
            encode: Converts the result to a storable (JSON) value.
            decode: Rebuilds a result from the stored value on replay.

        Returns:
            The handler's result, fresh or replayed.

        Raises:
            IdempotencyKeyReuseError: The key was bound to another request.
            IdempotencyInFlightError: The same request is still executing.
            Exception: Whatever ``fn`` raised, unchanged.
        """
        record = await self._ledger.get(key)
        if record is None:
            try:
                await self._ledger.create(IdempotencyRecord.new_pending(key, request_hash, self._ttl))
            except DuplicateRecordError:
                # Lost the insert race; answer from the winner's record
                record = await self._ledger.get(key)
                if record is None:
                    self._count("conflict")
                    raise IdempotencyInFlightError(key)

        if record is not None:
            replay = await self._resolve_existing(record, request_hash)
            if replay is not _EXECUTE:
                self._count("replayed")
                logger.info("idempotent_request_replayed", idempotency_key=key)
                return decode(replay) if decode else replay

        try:
            result = await fn()
        except (Exception, asyncio.CancelledError):
            await self._ledger.fail(key)
            self._count("failed")
            logger.info("idempotent_request_failed", idempotency_key=key)
            raise

        await self._ledger.complete(key, encode(result) if encode else result)
        self._count("executed")
        return result

    def generate_idempotency_key(self) -> str:
        return create_idempotency_key()

    async def cleanup_expired_keys(self) -> int:
        """Delete expired ledger records; returns how many were removed."""
        removed = await self._ledger.delete_expired(utcnow())
        if removed:
            logger.info("idempotency_keys_expired", removed=removed)
        if self._metrics is not None:
            self._metrics.idempotency_keys_expired_total.inc(removed)
        return removed

    async def get_idempotency_status(self, key: str) -> Optional[IdempotencyRecord]:
        return await self._ledger.get(key)

    @staticmethod
    def compute_request_hash(payload: Any) -> str:
        """SHA-256 of the canonical JSON form of ``payload``."""
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    async def _resolve_existing(self, record: IdempotencyRecord, request_hash: str) -> Any:
        """Cached body to replay, or ``_EXECUTE`` if this caller should run the handler."""
        if not record.matches(request_hash):
            self._count("conflict")
            logger.warning("idempotency_key_reused", idempotency_key=record.key)
            raise IdempotencyKeyReuseError(record.key)
        if record.status == IdempotencyStatus.COMPLETED:
            return record.response_body
        if record.status == IdempotencyStatus.FAILED and await self._ledger.claim_failed(record.key):
            logger.info("idempotent_request_retry", idempotency_key=record.key)
            return _EXECUTE
        self._count("conflict")
        raise IdempotencyInFlightError(record.key)

    def _count(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.idempotency_requests_total.labels(outcome=outcome).inc()


def idempotent(
    service: IdempotencyService,
    key_of: Callable[..., Optional[str]],
    payload_of: Optional[Callable[..., Any]] = None,
    encode: Optional[Callable[[Any], Any]] = None,
    decode: Optional[Callable[[Any], Any]] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Make an async handler idempotent.

    ``key_of`` extracts the idempotency key from the call arguments; calls
    without a key execute directly. ``payload_of`` extracts the logical
    request to fingerprint (defaults to all arguments).

    Example:
        @idempotent(service, key_of=lambda req: req.idempotency_key,
                    payload_of=lambda req: req.fingerprint())
        async def handle(req): ...
    """

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            key = key_of(*args, **kwargs)
            if not key:
                return await fn(*args, **kwargs)
            payload = payload_of(*args, **kwargs) if payload_of else {"args": args, "kwargs": kwargs}
            return await service.process_idempotent_request(
                key,
                service.compute_request_hash(payload),
                lambda: fn(*args, **kwargs),
                encode=encode,
                decode=decode,
            )

        return wrapper

    return decorator
