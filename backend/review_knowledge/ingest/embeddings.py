"""Embedding utilities."""

from __future__ import annotations

import hashlib
import logging
import math
import re
from array import array
from typing import Iterable, Sequence

from review_knowledge.core.protocols import EmbeddingPurpose, EmbeddingResult

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class HashedEmbeddingProvider:
    """Lightweight hashed bag-of-words embeddings with deterministic output.

    Satisfies ``EmbeddingProvider``. Text with no word tokens yields ``None``
    so callers treat it like an unavailable embedding.
    """

    _instances: dict[tuple[str, int], "HashedEmbeddingProvider"] = {}

    def __init__(self, model_name: str = "hashed-384", dim: int = 384) -> None:
        if dim <= 0:
            raise ValueError("dim must be positive")
        self.model_name = model_name
        self._dim = dim

    @classmethod
    def get(cls, model_name: str, dim: int = 384) -> "HashedEmbeddingProvider":
        key = (model_name or "hashed", dim)
        if key not in cls._instances:
            cls._instances[key] = HashedEmbeddingProvider(model_name=key[0], dim=dim)
        return cls._instances[key]

    @property
    def model(self) -> str:
        return self.model_name

    @property
    def dimensions(self) -> int:
        return self._dim

    async def generate(self, text: str, purpose: EmbeddingPurpose = "document") -> EmbeddingResult | None:
        vector = self.encode_one(text)
        if vector is None:
            logger.debug("No tokens to embed for %s text", purpose)
            return None
        return EmbeddingResult(vector=vector, model=self.model_name, dimensions=self._dim)

    def encode_one(self, text: str) -> list[float] | None:
        tokens = _tokenize(text or "")
        if not tokens:
            return None
        vector = [0.0] * self._dim
        for token in tokens:
            vector[_hash_token(token, self._dim)] += 1.0
        _normalize(vector)
        return vector

    def encode(self, texts: Iterable[str]) -> list[list[float] | None]:
        return [self.encode_one(text) for text in texts]


def vector_to_bytes(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def vector_from_bytes(payload: bytes) -> list[float]:
    values = array("f")
    values.frombytes(payload)
    return values.tolist()


def cosine_distance(left: Sequence[float], right: Sequence[float]) -> float:
    """``1 - cosine similarity``; 1.0 when either vector is all zeros."""
    if len(left) != len(right):
        raise ValueError("Vector dimension mismatch")
    dot = sum(a * b for a, b in zip(left, right))
    left_norm = math.sqrt(sum(a * a for a in left))
    right_norm = math.sqrt(sum(b * b for b in right))
    if left_norm == 0 or right_norm == 0:
        return 1.0
    return 1.0 - dot / (left_norm * right_norm)


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = ["HashedEmbeddingProvider", "vector_to_bytes", "vector_from_bytes", "cosine_distance"]
