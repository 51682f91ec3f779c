"""Shared math, fingerprints and blob helpers for the tool index."""

from __future__ import annotations

import hashlib
import math
import struct
from typing import List, Optional

TOOL_NAME_SEPARATOR = "__"
FLOAT32_BYTES = 4


def compute_fingerprint(name: str, description: str) -> str:
    """Return the MD5 hex digest identifying a tool by its name and description.

    The two fields are concatenated without a separator and stripped of
    surrounding whitespace before hashing, so the digest is stable across
    processes and restarts.
    """
    text = f"{name or ''}{description or ''}".strip()
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def embedding_text(name: str, description: str) -> str:
    """Text sent to the embedding provider for one tool."""
    return f"{name or ''} {description or ''}".strip()


def server_name_filter(server_name: str) -> str:
    """LIKE pattern matching every tool published by ``server_name``."""
    escaped = (
        server_name.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )
    return f"{escaped}\\_\\_%"


def split_tool_name(tool_name: str) -> tuple[str, str]:
    """Split ``server__tool`` into its server and tool parts."""
    server, sep, rest = tool_name.partition(TOOL_NAME_SEPARATOR)
    if not sep:
        return "unknown", tool_name
    return server or "unknown", rest or tool_name


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Compute cosine similarity between two vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a_sq = sum(x * x for x in a)
    norm_b_sq = sum(x * x for x in b)
    if norm_a_sq == 0 or norm_b_sq == 0:
        return 0.0
    # sqrt of the product keeps identical vectors at exactly 1.0
    similarity = dot / math.sqrt(norm_a_sq * norm_b_sq)
    return max(-1.0, min(1.0, similarity))


def cosine_distance(a: List[float], b: List[float]) -> float:
    """Cosine distance, ``1 - cosine_similarity``."""
    return 1.0 - cosine_similarity(a, b)


def serialize_embedding(embedding: List[float]) -> bytes:
    """Convert embedding to little-endian float32 bytes for SQLite storage."""
    return struct.pack(f"<{len(embedding)}f", *embedding)


def deserialize_embedding(data: bytes) -> List[float]:
    """Convert bytes back to embedding list."""
    if not data:
        return []
    count = len(data) // FLOAT32_BYTES
    return list(struct.unpack(f"<{count}f", data[: count * FLOAT32_BYTES]))


def sql_cosine_distance(left: Optional[bytes], right: Optional[bytes]) -> Optional[float]:
    """SQLite scalar function comparing two serialized embeddings.

    Returns NULL for missing or mismatched-dimension blobs so the row never
    satisfies a similarity floor.
    """
    if not left or not right or len(left) != len(right):
        return None
    return cosine_distance(deserialize_embedding(left), deserialize_embedding(right))


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
            )
        previous = current
    return previous[-1]


def name_similarity(a: str, b: str) -> float:
    """Normalised name similarity in ``[0, 1]`` based on edit distance."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1.0 - levenshtein_distance(a, b) / max(len(a), len(b))
