"""
Hashing utilities for the tamper-evident audit chain.

Each audit entry stores the hash of its predecessor and a hash over its own
canonical content. Rewriting any historical entry changes its hash and breaks
every link after it.

Design Decisions:
- SHA-256, hex-encoded with a 'sha256:' prefix so the algorithm is explicit
- Canonical JSON (sorted keys, no whitespace) so the same content always
  produces the same bytes regardless of dict ordering
"""

import hashlib
import json
from typing import Any

HASH_PREFIX = "sha256:"

# Chain anchor used as prev_hash for the very first entry
GENESIS_HASH = HASH_PREFIX + "0" * 64


def canonical_json(payload: Any) -> str:
    """Serialize ``payload`` deterministically."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def compute_entry_hash(prev_hash: str, payload: dict[str, Any]) -> str:
    """
    Compute the chained hash of one audit entry.

    Args:
        prev_hash: entry_hash of the preceding entry (GENESIS_HASH for the first)
        payload: The entry's content, without its own hash fields

    Returns:
        Hex-encoded SHA-256 prefixed with 'sha256:'
    """
    if not prev_hash.startswith(HASH_PREFIX):
        raise ValueError(f"Invalid hash format, expected '{HASH_PREFIX}' prefix: {prev_hash}")

    combined = f"{prev_hash}|{canonical_json(payload)}"
    digest = hashlib.sha256(combined.encode("utf-8")).hexdigest()
    return f"{HASH_PREFIX}{digest}"


def verify_entry_hash(prev_hash: str, payload: dict[str, Any], expected_hash: str) -> bool:
    """Check a stored entry_hash against its recomputed value."""
    return compute_entry_hash(prev_hash, payload) == expected_hash
