"""
Attestation Platform - digital insurance certificate issuance

Drives certificates through their lifecycle by reconciling the policy
registry with the attestation provider: idempotent creation, duplicate
protection, asynchronous submission and status reconciliation.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"
