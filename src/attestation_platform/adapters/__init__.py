"""Adapters layer - implementations of ports.

Adapters connect the application to external systems:
- Inbound adapters: REST API
- Outbound adapters: storage (memory, SQL), registry and provider HTTP clients
"""
