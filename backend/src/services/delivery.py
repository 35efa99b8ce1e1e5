"""
Delivery outcome reported by channel dispatchers.

Dispatchers never raise into the engine; they report what happened so the
engine can log it and tests can assert on it.
"""

import enum


class DeliveryStatus(str, enum.Enum):
    """Outcome of a single channel dispatch."""
    SENT = "sent"              # Accepted by the relay / provider
    SIMULATED = "simulated"    # No credentials configured; delivered locally or logged
    SKIPPED = "skipped"        # Nothing to deliver to (no address, no linked device)
    FAILED = "failed"          # Relay/provider error, logged and swallowed
