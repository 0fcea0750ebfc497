"""AI client for item embeddings and photo metadata, with OpenAI integration.

Security: Reads API key from settings only, never hardcoded.
Provides a deterministic stub when no key is present, for tests and local runs.

Clients raise on provider errors. Retries, circuit breaking and the
degrade-to-empty-metadata rule live with the caller (item ingestion), which
runs every call through the AI GuardedDependency.
"""

import hashlib
import json
import logging
import math
import re
from typing import Protocol

from openai import AsyncOpenAI
from pydantic import ValidationError

from backend.app.config import Settings
from backend.app.errors import TransientFailureError
from backend.app.models.items import ItemMetadataV1

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class AIClient(Protocol):
    """Protocol for AI client implementations."""

    async def embed(self, text: str) -> list[float]:
        """Embed text into a fixed-dimension vector.

        Args:
            text: Composed item text (see compose_embedding_text)

        Returns:
            Vector of `embedding_dimensions` floats
        """
        ...

    async def describe(
        self, *, image_url: str | None, title: str, description: str | None
    ) -> ItemMetadataV1:
        """Extract structured metadata and a verification question for an item.

        Args:
            image_url: Public URL of the item photo (None when no photo)
            title: Reporter's title
            description: Reporter's description

        Returns:
            ItemMetadataV1 (empty when there is nothing to analyse)
        """
        ...


def compose_embedding_text(
    *,
    title: str,
    description: str | None = None,
    category: str | None = None,
    location: str | None = None,
    metadata: ItemMetadataV1 | None = None,
) -> str:
    """Combine report fields and AI metadata into the text that gets embedded.

    Empty fields are skipped so that a sparse report does not dilute the vector
    with labels alone.
    """
    lines = [f"Title: {title}"]
    if description:
        lines.append(f"Description: {description}")
    category = category or (metadata.category if metadata else None)
    if category:
        lines.append(f"Category: {category}")
    if location:
        lines.append(f"Location: {location}")

    if metadata is not None:
        if metadata.detected_objects:
            lines.append(f"Objects: {', '.join(metadata.detected_objects)}")
        if metadata.colors:
            lines.append(f"Colors: {', '.join(metadata.colors)}")
        if metadata.brand:
            lines.append(f"Brand: {metadata.brand}")
        if metadata.distinctive_features:
            lines.append(f"Features: {', '.join(metadata.distinctive_features)}")

    return "\n".join(lines)


class DeterministicStubClient:
    """Deterministic stub client for testing (no API key required).

    Embeddings are hashed bags of words, L2-normalised, so texts sharing words
    land close together and identical texts have similarity 1.0.
    """

    def __init__(self, dimensions: int = 768) -> None:
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        """Hash each token into a bucket of the output vector."""
        vector = [0.0] * self.dimensions
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode()).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimensions
            vector[bucket] += 1.0

        norm = math.sqrt(sum(x * x for x in vector))
        if norm == 0.0:
            return vector
        return [x / norm for x in vector]

    async def describe(
        self, *, image_url: str | None, title: str, description: str | None
    ) -> ItemMetadataV1:
        """No vision model: empty metadata."""
        return ItemMetadataV1.empty()


class OpenAIClient:
    """OpenAI-backed client for embeddings and photo metadata."""

    def __init__(
        self,
        api_key: str,
        embedding_model: str = "text-embedding-3-small",
        vision_model: str = "gpt-4o-mini",
        dimensions: int = 768,
    ):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from settings)
            embedding_model: Embedding model name
            vision_model: Chat model with image input
            dimensions: Requested embedding size (must match the vector column)
        """
        self.client = AsyncOpenAI(api_key=api_key)
        self.embedding_model = embedding_model
        self.vision_model = vision_model
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        """Generate an embedding using the OpenAI API."""
        response = await self.client.embeddings.create(
            model=self.embedding_model,
            input=text,
            dimensions=self.dimensions,
        )
        vector = list(response.data[0].embedding)

        if len(vector) != self.dimensions:
            raise TransientFailureError(
                f"Embedding has {len(vector)} dimensions, expected {self.dimensions}"
            )
        return vector

    async def describe(
        self, *, image_url: str | None, title: str, description: str | None
    ) -> ItemMetadataV1:
        """Analyse the item photo and propose a verification question."""
        if not image_url:
            return ItemMetadataV1.empty()

        response = await self.client.chat.completions.create(
            model=self.vision_model,
            messages=[
                {"role": "system", "content": self._build_system_prompt()},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self._build_context(title, description)},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                },
            ],
            response_format={"type": "json_object"},
            temperature=0.2,
            max_tokens=600,
        )

        content = response.choices[0].message.content or ""
        if not content.strip():
            logger.warning("OpenAI returned empty vision response, using empty metadata")
            return ItemMetadataV1.empty()

        try:
            return ItemMetadataV1.model_validate({**json.loads(content), "version": "v1"})
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Vision response did not match ItemMetadataV1: {e}")
            return ItemMetadataV1.empty()

    def _build_system_prompt(self) -> str:
        """Build system prompt for item analysis."""
        return """You catalogue items handed in to a campus lost and found.
Given a photo and the reporter's title, reply with a JSON object with these keys:

- detected_objects: list of short nouns for what is in the photo
- colors: list of dominant colours
- brand: brand name if clearly visible, else null
- condition: one of "new", "good", "worn", "damaged", or null
- distinctive_features: stickers, scratches, engravings, keychains and similar marks
- category: one of "Electronics", "Clothing", "Bags", "Keys", "Cards & IDs", "Books",
  "Jewelry", "Water Bottles", "Other"
- verification_question: a question only the real owner could answer, about a detail
  that is NOT obvious from a listing photo. Never reveal the answer in the question.
- confidence: number between 0 and 1

Only describe what is visible. Do not guess serial numbers or personal data."""

    def _build_context(self, title: str, description: str | None) -> str:
        lines = [f"Title: {title}"]
        if description:
            lines.append(f"Description: {description}")
        return "\n".join(lines)


def get_ai_client(settings: Settings) -> AIClient:
    """Factory function to get appropriate AI client based on config.

    Returns:
        OpenAIClient if API key is configured, DeterministicStubClient otherwise
    """
    api_key = settings.openai_api_key

    if api_key and api_key.get_secret_value():
        logger.info("Using OpenAI client for embeddings and vision")
        return OpenAIClient(
            api_key=api_key.get_secret_value(),
            embedding_model=settings.openai_embedding_model,
            vision_model=settings.openai_vision_model,
            dimensions=settings.embedding_dimensions,
        )
    logger.warning("No OpenAI API key configured, using deterministic stub client")
    return DeterministicStubClient(dimensions=settings.embedding_dimensions)
