"""Transparency anchoring.

Periodically commits the issuer registry and the event-chain heads to a
single combined digest, records it as an anchor and publishes it to
external append-only targets so that later tampering is detectable.
"""

__version__ = "0.1.0"
