"""Test doubles and vector helpers shared across suites."""

import math
from collections.abc import Awaitable, Callable

from backend.app.db.repositories import ItemRecord
from backend.app.errors import TransientFailureError

ItemFactory = Callable[..., Awaitable[ItemRecord]]


async def no_sleep(_: float) -> None:
    """Retry backoff replacement that returns immediately."""
    return None


def base_vector(dims: int = 4) -> list[float]:
    return [1.0] + [0.0] * (dims - 1)


def vector_at(similarity: float, dims: int = 4) -> list[float]:
    """Unit vector whose cosine similarity with `base_vector()` is `similarity`."""
    return [similarity, math.sqrt(max(0.0, 1 - similarity**2))] + [0.0] * (dims - 2)


class RecordingEmailSender:
    """EmailSender that records messages, or fails every send when `fail` is set."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    async def send(self, to: str, subject: str, html_body: str) -> None:
        if self.fail:
            raise TransientFailureError("mail provider unavailable")
        self.sent.append((to, subject, html_body))
