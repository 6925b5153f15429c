"""Embedding backends, batching and the query-time embedding cache."""

import hashlib
import logging
import re
import threading
from collections import OrderedDict
from typing import Protocol

import httpx
import numpy as np

from context_mcp.config import EmbeddingConfig
from context_mcp.indexer.errors import EmbeddingError

logger = logging.getLogger(__name__)

WORD_PATTERN = re.compile(r"[A-Za-z0-9_]+")
CAMEL_PATTERN = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


class Embedder(Protocol):
    """Anything that turns text into fixed-size vectors."""

    model: str
    dimension: int

    def embed(self, text: str) -> np.ndarray: ...

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]: ...


def tokenize(text: str) -> list[str]:
    """Lower-cased words plus the sub-words of snake_case and CamelCase identifiers."""
    tokens: list[str] = []
    for word in WORD_PATTERN.findall(text):
        lowered = word.lower()
        tokens.append(lowered)
        parts = [p.lower() for piece in word.split("_") for p in CAMEL_PATTERN.findall(piece)]
        if len(parts) > 1:
            tokens.extend(parts)
    return tokens


def normalize(vector) -> np.ndarray:
    """L2-normalize a vector as float32; zero vectors are returned unchanged."""
    vector = np.asarray(vector, dtype="float32")
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm


def cosine_similarity(a, b) -> float:
    a = np.asarray(a, dtype="float32")
    b = np.asarray(b, dtype="float32")
    if a.shape != b.shape:
        raise ValueError(f"Vector dimensions differ: {a.shape[-1]} != {b.shape[-1]}")
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def cosine_scores(matrix: np.ndarray, query) -> np.ndarray:
    """Cosine similarity of every row of ``matrix`` against ``query``.

    Rows (or a query) with zero norm score 0.
    """
    matrix = np.asarray(matrix, dtype="float32")
    query = np.asarray(query, dtype="float32")
    if matrix.ndim != 2 or matrix.shape[1] != query.shape[0]:
        raise ValueError(f"Vector dimensions differ: {matrix.shape} vs {query.shape}")
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(matrix.shape[0], dtype="float32")
    norms = np.linalg.norm(matrix, axis=1)
    norms[norms == 0] = 1.0
    return (matrix @ query) / (norms * query_norm)


class HashEmbedder:
    """Deterministic local embedder using signed feature hashing.

    Each token is hashed with blake2b into a bucket and a sign; the vector is
    L2-normalized. Texts sharing vocabulary end up close, which is enough
    for local retrieval without a model server.
    """

    def __init__(self, dimension: int = 384, model: str = "hash-embedding"):
        if dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")
        self.dimension = dimension
        self.model = model

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype="float32")
        for token in tokenize(text):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "little")
            bucket = value % self.dimension
            sign = 1.0 if (value >> 63) & 1 == 0 else -1.0
            vector[bucket] += sign
        return normalize(vector)

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        return [self.embed(text) for text in texts]


class HttpEmbedder:
    """Embedder backed by an Ollama-compatible ``/api/embed`` endpoint."""

    def __init__(
        self,
        base_url: str,
        model: str,
        dimension: int,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        self.model = model
        self.dimension = dimension
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        if not texts:
            return []
        try:
            response = self._client.post("/api/embed", json={"model": self.model, "input": texts})
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e
        except ValueError as e:
            raise EmbeddingError(f"Embedding response is not JSON: {e}") from e

        vectors = payload.get("embeddings") if isinstance(payload, dict) else None
        if not isinstance(vectors, list) or len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding response must contain {len(texts)} vectors under 'embeddings'"
            )
        for vector in vectors:
            if not isinstance(vector, list) or len(vector) != self.dimension:
                raise EmbeddingError(
                    f"Embedding dimension mismatch: expected {self.dimension}, "
                    f"got {len(vector) if isinstance(vector, list) else type(vector).__name__}"
                )
        try:
            return [np.asarray(vector, dtype="float32") for vector in vectors]
        except (TypeError, ValueError) as e:
            raise EmbeddingError(f"Embedding response holds non-numeric values: {e}") from e

    def close(self) -> None:
        self._client.close()


def create_embedder(config: EmbeddingConfig) -> Embedder:
    """Remote embedder when a base URL is configured, local hashing otherwise."""
    if config.base_url:
        logger.info("Using HTTP embedder %s at %s", config.model, config.base_url)
        return HttpEmbedder(config.base_url, config.model, config.dimension, config.timeout)
    return HashEmbedder(config.dimension, config.model)


def embed_in_batches(embedder: Embedder, texts: list[str], batch_size: int) -> list[np.ndarray]:
    """Embed texts in batches of at most batch_size, preserving order."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    vectors: list[np.ndarray] = []
    for i in range(0, len(texts), batch_size):
        batch = texts[i : i + batch_size]
        result = embedder.embed_batch(batch)
        if len(result) != len(batch):
            raise EmbeddingError(f"Embedder returned {len(result)} vectors for {len(batch)} texts")
        vectors.extend(result)
    return vectors


class EmbeddingCache:
    """Bounded LRU of vectors keyed by chunk id and text digest."""

    def __init__(self, max_size: int = 2048):
        self.max_size = max_size
        self._entries: OrderedDict[str, np.ndarray] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(chunk_id: int | str, text: str) -> str:
        return f"{chunk_id}:{hashlib.sha1(text.encode('utf-8')).hexdigest()}"

    def get(self, chunk_id: int | str, text: str) -> np.ndarray | None:
        key = self.key(chunk_id, text)
        with self._lock:
            vector = self._entries.get(key)
            if vector is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return vector

    def put(self, chunk_id: int | str, text: str, vector: np.ndarray) -> None:
        key = self.key(chunk_id, text)
        with self._lock:
            self._entries[key] = vector
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def get_or_embed(self, chunk_id: int | str, text: str, embedder: Embedder) -> np.ndarray:
        vector = self.get(chunk_id, text)
        if vector is None:
            vector = embedder.embed(text)
            self.put(chunk_id, text, vector)
        return vector

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict:
        with self._lock:
            total = self.hits + self.misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / total, 3) if total else 0.0,
            }
