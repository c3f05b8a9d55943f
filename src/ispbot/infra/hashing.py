"""Hashing utilities for PII-safe logging.

Chat ids identify a person's phone. Logs only ever carry a short,
non-reversible digest so events of one conversation can still be grouped.
"""

import hashlib


def hash_identifier(value: str) -> str:
    """Create non-reversible hash for logging. Returns first 12 chars of sha256."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]
