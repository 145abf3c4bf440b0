"""Ingestion layer.

This package turns raw topic/payload pairs received from the broker into
typed device messages.
"""

__all__: list[str] = []
