"""
Change Detector - content hashing of the fields that matter.

Hashes are sha256 digests of the canonical JSON encoding (sorted keys,
compact separators), so key order never changes the result.
"""

import hashlib
import json
from typing import Any, Dict, Optional

from tree import get_path


def compute_data_hash(data: Any) -> str:
    """Calculate a stable hash of a JSON-like value for change detection."""
    encoded = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode()).hexdigest()


def default_data_to_hash(resource: Dict[str, Any]) -> Dict[str, Any]:
    """Labels and spec are significant by default."""
    return {
        "labels": get_path(resource, ["metadata", "labels"]),
        "spec": get_path(resource, ["spec"]),
    }


def has_changed(stored: Optional[str], computed: str) -> bool:
    return stored != computed
