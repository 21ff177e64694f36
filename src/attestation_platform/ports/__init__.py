"""Ports (hexagonal architecture boundaries) for the attestation platform."""
