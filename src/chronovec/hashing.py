"""Deterministic identifiers: commit hashes, point ids, and vector refs."""

from __future__ import annotations

import hashlib
import json
import uuid
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

HASH_ALGORITHM = "sha256"
"""Tag prefixed to every commit hash (``sha256:<hex>``)."""

_ID_PREFIX = "chronovec:"


def _canonical(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str).encode()


def point_digest(
    source_doc_id: str,
    chunk_index: int,
    vector: list[float],
    metadata: dict[str, Any] | None = None,
    *,
    point_id: str | None = None,
) -> str:
    """SHA256 over one point's identity and content.

    Including *point_id* (which is group-scoped by default) keeps equal
    content committed to different groups from hashing alike.
    """
    body = {
        "point_id": point_id,
        "source_doc_id": source_doc_id,
        "chunk_index": chunk_index,
        "vector": [float(x) for x in vector],
        "metadata": metadata or {},
    }
    return hashlib.sha256(_canonical(body)).hexdigest()


def compute_commit_hash(
    point_digests: Iterable[str],
    parent_hash: str | None,
    timestamp: datetime,
) -> str:
    """Content-addressed commit hash.

    Order-insensitive in *point_digests*; the same points, parent and
    timestamp always produce the same hash.
    """
    h = hashlib.new(HASH_ALGORITHM)
    h.update(_canonical({
        "parent": parent_hash,
        "timestamp": timestamp.isoformat(),
        "points": sorted(point_digests),
    }))
    return f"{HASH_ALGORITHM}:{h.hexdigest()}"


def is_commit_hash(value: str) -> bool:
    """Whether *value* looks like a commit hash produced by this module."""
    algo, sep, digest = value.partition(":")
    return bool(sep) and algo == HASH_ALGORITHM and len(digest) == 64


def default_point_id(group_id: str, source_doc_id: str, chunk_index: int) -> str:
    """Stable logical id for a chunk, shared by all of its versions."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{_ID_PREFIX}{group_id}/{source_doc_id}/{chunk_index}"))


def make_vector_ref(point_id: str, op_id: str) -> str:
    """PointStore id for the version of *point_id* written by *op_id*.

    Stable across CAS retries of one operation, unique across operations.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{_ID_PREFIX}{point_id}@{op_id}"))
