import hashlib
import logging
import re
from typing import List, Optional

import httpx
import numpy as np

from app.core.config import AISettings
from app.core.exceptions import ProviderError

logger = logging.getLogger(__name__)

# Embedding dimensions for the offline hash embedder
EMBEDDING_DIM = 384

_TOKEN = re.compile(r"[a-z0-9]+")


def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """Calculate cosine similarity between two vectors."""
    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)
    if a.shape != b.shape:
        return 0.0
    norm1 = np.linalg.norm(a)
    norm2 = np.linalg.norm(b)
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return float(np.dot(a, b) / (norm1 * norm2))


class HashEmbeddingProvider:
    """
    Deterministic feature-hashing embedder (no API calls).
    Texts sharing vocabulary land close together, which is enough for local
    development and tests; production should use a real embedding model.
    """

    def __init__(self, dim: int = EMBEDDING_DIM):
        self.dim = dim

    async def embed(self, text: str) -> List[float]:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> List[float]:
        vector = np.zeros(self.dim, dtype=float)
        for token in _TOKEN.findall((text or "").lower()):
            digest = hashlib.sha256(token.encode()).digest()
            index = int.from_bytes(digest[:4], "big") % self.dim
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            vector[index] += sign
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.tolist()


class OpenAIEmbeddingProvider:
    """Client for any OpenAI-compatible /embeddings endpoint."""

    def __init__(self, ai_settings: AISettings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = ai_settings
        self._client = http_client or httpx.AsyncClient()

    async def aclose(self):
        await self._client.aclose()

    async def embed(self, text: str) -> List[float]:
        if not self.settings.embedding_api_key:
            raise ProviderError("embedding", "API key not configured", transient=False)
        try:
            response = await self._client.post(
                self.settings.embedding_url,
                headers={"Authorization": f"Bearer {self.settings.embedding_api_key}"},
                json={"model": self.settings.embedding_model, "input": text[:8000]},
            )
            response.raise_for_status()
            return response.json()["data"][0]["embedding"]
        except httpx.TimeoutException:
            raise ProviderError("embedding", "request timed out")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError("embedding", f"HTTP {status}", transient=status >= 500 or status == 429)
        except httpx.HTTPError as e:
            raise ProviderError("embedding", str(e))
        except (KeyError, IndexError, ValueError):
            raise ProviderError("embedding", "malformed embedding payload", transient=False)
