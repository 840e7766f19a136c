"""
Deterministic fingerprinting for integrity checks and run identity.

This module provides pure functions for generating deterministic hashes:
- Dataset file digests and line counts (manifest integrity)
- Whole-manifest digests used to tag reports
- Engine fingerprints over extraction engine source files

CRITICAL: These functions must be deterministic.
Same inputs MUST produce same output every time.
"""

import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Union


def compute_file_digest(filepath: Path) -> str:
    """
    Compute SHA256 digest of a file's raw bytes.

    Args:
        filepath: File to hash

    Returns:
        SHA256 hash (64-character hex string)
    """
    sha256 = hashlib.sha256()
    with open(filepath, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def count_lines(filepath: Path) -> int:
    """
    Count the lines of a file.

    A trailing newline does not start a new line, so "a\\nb\\n" and
    "a\\nb" both count as 2.
    """
    with open(filepath, "rb") as f:
        return len(f.read().splitlines())


def compute_content_hash(content: Dict[str, Any]) -> str:
    """
    Compute deterministic hash of JSON content.

    Used for the whole-manifest digest that tags every report.

    Args:
        content: Dictionary to hash

    Returns:
        SHA256 hash (64-character hex string)
    """
    # Convert to JSON with sorted keys for determinism
    json_str = json.dumps(content, sort_keys=True, separators=(',', ':'))

    # Compute SHA256
    return hashlib.sha256(json_str.encode('utf-8')).hexdigest()


def compute_sources_fingerprint(paths: Iterable[Union[str, Path]]) -> str:
    """
    Compute a content-derived fingerprint over a list of source files.

    Files are hashed in the order given. A missing file contributes the
    marker "MISSING:<path>" instead of its bytes, so deleting a source
    changes the fingerprint.

    Example:
        >>> fp1 = compute_sources_fingerprint(["engine.py"])
        >>> fp2 = compute_sources_fingerprint(["engine.py"])
        >>> assert fp1 == fp2  # Same logic, same fingerprint
    """
    sha256 = hashlib.sha256()
    for path in paths:
        path = Path(path)
        if path.is_file():
            sha256.update(path.read_bytes())
        else:
            sha256.update(f"MISSING:{path}".encode('utf-8'))
    return sha256.hexdigest()
