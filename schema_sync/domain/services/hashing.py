import hashlib
import json
from typing import Any


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def stable_json(value: Any) -> str:
    """JSON with sorted keys so equal structures always serialize identically."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def hash_reference_text(text: str) -> str:
    return sha256_hex((text or "").strip())


def hash_snapshot(snapshot_dict: Any) -> str:
    return sha256_hex(stable_json(snapshot_dict))
