"""Detection of an active certificate for the same policy/vehicle/company.

This is the application-level check run inside the creation transaction. The
storage layer backs it with a partial unique index, so a concurrent request
that passes this check still loses at insert time.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from attestation_platform.domain.entities.certificate import Certificate

if TYPE_CHECKING:
    from attestation_platform.ports.outbound import CertificateStore, Transaction

logger = logging.getLogger(__name__)


async def find_active_conflict(
    store: CertificateStore,
    policy_number: str,
    registration_number: str,
    company_code: str,
    tx: Optional[Transaction] = None,
) -> Optional[Certificate]:
    """Return the first active certificate for the triple, if any.

    Args:
        store: Certificate store to query.
        policy_number: Policy number.
        registration_number: Vehicle registration number.
        company_code: Insurer company code.
        tx: Transaction to read in (sees its own uncommitted rows).

    Returns:
        The oldest certificate in pending/processing/completed, or None.
    """
    existing = await store.find_by_business_key(
        policy_number, registration_number, company_code, tx=tx
    )
    active = [cert for cert in existing if cert.is_active]
    if active:
        logger.info(
            f"Active certificate {active[0].id} ({active[0].status.value}) exists for "
            f"{policy_number}/{registration_number}/{company_code}"
        )
        return active[0]
    return None
