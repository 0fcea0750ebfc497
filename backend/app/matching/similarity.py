"""Vector similarity helpers shared by the ranker, the in-memory store and previews."""

import math
from collections.abc import Sequence
from uuid import UUID

from backend.app.models.common import ItemKind

_CONFIDENCE_LABELS: tuple[tuple[float, str], ...] = (
    (0.95, "Very High"),
    (0.85, "High"),
    (0.75, "Medium"),
    (0.65, "Low"),
)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    Matches `1 - cosine_distance` as computed by pgvector's `<=>` operator.
    A zero vector has no direction, so its similarity to anything is 0.

    Raises:
        ValueError: Vectors differ in length
    """
    if len(a) != len(b):
        raise ValueError(f"dimension mismatch: {len(a)} != {len(b)}")

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b, strict=True):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def similarity_to_confidence(score: float) -> str:
    """Human-readable label for a similarity score."""
    for threshold, label in _CONFIDENCE_LABELS:
        if score >= threshold:
            return label
    return "Very Low"


def normalize_pair(kind_a: ItemKind, id_a: UUID, id_b: UUID) -> tuple[UUID, UUID]:
    """Order two item IDs as (lost, found) given the kind of the first one."""
    if kind_a == ItemKind.lost:
        return id_a, id_b
    return id_b, id_a
