"""State/store layer.

This package is the single source of truth for how inbound device messages
are merged into the live per-tap session state.
"""
