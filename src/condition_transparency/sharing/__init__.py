"""
Consent-gated external sharing.

Key components:
- ConsentLedger: append-only consent decisions and current-state queries
- ShareLinkService: opaque, time-boxed share links with access logging
"""

from .consent import ConsentLedger, ConsentStatus
from .service import ExpiryPolicy, ShareLinkService, hash_identifier

__all__ = [
    "ConsentLedger",
    "ConsentStatus",
    "ExpiryPolicy",
    "ShareLinkService",
    "hash_identifier",
]
