"""Inbound adapters - implementations for external callers.

Inbound adapters expose the certificate service to the outside world
via the REST API.
"""

from attestation_platform.adapters.inbound.rest_api import create_app

__all__ = ["create_app"]
