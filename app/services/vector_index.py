"""
Vector index adapters.

SqlVectorIndex keeps vectors next to the relational data and scores them with
numpy; PineconeVectorIndex talks to a managed index over REST. Both satisfy
the VectorIndex contract in app.services.providers.
"""
import logging
from typing import Any, Callable, ContextManager, Dict, List, Optional

import httpx
import numpy as np
from sqlalchemy.orm import Session

from app.core.config import AISettings
from app.core.exceptions import ProviderError
from app.models.embedding_record import EmbeddingRecord
from app.services.providers import VectorMatch

logger = logging.getLogger(__name__)

# Filter keys stored as real columns; anything else is matched against metadata
_COLUMN_FILTERS = ("organization_id", "employee_id", "content_type")


class SqlVectorIndex:
    def __init__(self, session_scope: Callable[[], ContextManager[Session]]):
        self.session_scope = session_scope

    async def upsert(self, id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        with self.session_scope() as db:
            record = db.get(EmbeddingRecord, id)
            if record is None:
                record = EmbeddingRecord(id=id)
                db.add(record)
            record.organization_id = metadata["organization_id"]
            record.employee_id = metadata.get("employee_id")
            record.content_type = metadata.get("content_type", "unknown")
            record.source_id = str(metadata.get("source_id", id))
            record.preview = metadata.get("preview")
            record.embedding_vector = list(vector)
            record.record_metadata = metadata
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise

    async def query(self, vector: List[float], top_k: int, filter: Dict[str, Any]) -> List[VectorMatch]:
        with self.session_scope() as db:
            q = db.query(EmbeddingRecord)
            for key in _COLUMN_FILTERS:
                if filter.get(key) is not None:
                    q = q.filter(getattr(EmbeddingRecord, key) == filter[key])
            records = q.all()

        extra = {k: v for k, v in filter.items() if k not in _COLUMN_FILTERS and v is not None}
        records = [
            r for r in records
            if all((r.record_metadata or {}).get(k) == v for k, v in extra.items())
        ]
        if not records:
            return []

        query_vec = np.asarray(vector, dtype=float)
        query_norm = np.linalg.norm(query_vec)
        if query_norm == 0:
            return []
        matrix = np.asarray([r.embedding_vector for r in records], dtype=float)
        if matrix.shape[1] != query_vec.shape[0]:
            raise ProviderError("vector_index", "dimension mismatch between query and stored vectors", transient=False)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = 1.0
        scores = matrix @ query_vec / (norms * query_norm)

        order = np.argsort(-scores)[:top_k]
        return [
            VectorMatch(id=records[i].id, score=float(scores[i]), metadata=records[i].record_metadata or {})
            for i in order
        ]


class PineconeVectorIndex:
    def __init__(self, ai_settings: AISettings, http_client: Optional[httpx.AsyncClient] = None):
        if not ai_settings.pinecone_host:
            raise ValueError("PINECONE_HOST is not configured")
        self.settings = ai_settings
        self.base_url = ai_settings.pinecone_host.rstrip("/")
        if not self.base_url.startswith("http"):
            self.base_url = f"https://{self.base_url}"
        self._client = http_client or httpx.AsyncClient()

    async def aclose(self):
        await self._client.aclose()

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(
                f"{self.base_url}{path}",
                headers={"Api-Key": self.settings.pinecone_api_key or "", "Content-Type": "application/json"},
                json=payload,
            )
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException:
            raise ProviderError("pinecone", "request timed out")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError("pinecone", f"HTTP {status}", transient=status >= 500 or status == 429)
        except httpx.HTTPError as e:
            raise ProviderError("pinecone", str(e))

    async def upsert(self, id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        # Pinecone metadata values must be scalars or lists of strings
        clean = {k: v for k, v in metadata.items() if v is not None}
        await self._post("/vectors/upsert", {
            "vectors": [{"id": id, "values": vector, "metadata": clean}],
            "namespace": self.settings.pinecone_namespace,
        })

    async def query(self, vector: List[float], top_k: int, filter: Dict[str, Any]) -> List[VectorMatch]:
        data = await self._post("/query", {
            "vector": vector,
            "topK": top_k,
            "includeMetadata": True,
            "namespace": self.settings.pinecone_namespace,
            "filter": {k: {"$eq": v} for k, v in filter.items() if v is not None},
        })
        return [
            VectorMatch(id=m["id"], score=float(m.get("score", 0.0)), metadata=m.get("metadata") or {})
            for m in data.get("matches", [])
        ]
