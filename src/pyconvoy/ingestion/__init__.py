"""Ingestion layer.

This package contains adapters that receive data from the convoy backend
(REST roster, live WebSocket feed) and emit normalized domain objects and
update intents.
"""

__all__: list[str] = []
