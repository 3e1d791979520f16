"""
Contracts for the external collaborators of the review pipeline.

Concrete clients are built once at process start (see AIOrchestrator.from_settings)
and passed into each component, so tests can substitute fakes.
"""
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
from pydantic import BaseModel, Field


class Completion(BaseModel):
    text: str
    self_reported_certainty: Optional[float] = None
    model: str = "unknown"


class VectorMatch(BaseModel):
    id: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ClassificationResult(BaseModel):
    tone: str = "neutral"
    scores: Dict[str, float] = Field(default_factory=dict)  # quality, specificity, actionability (0-100)
    bias_indicators: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    summary: Optional[str] = None


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> List[float]: ...


@runtime_checkable
class VectorIndex(Protocol):
    async def upsert(self, id: str, vector: List[float], metadata: Dict[str, Any]) -> None: ...

    async def query(self, vector: List[float], top_k: int, filter: Dict[str, Any]) -> List[VectorMatch]: ...


@runtime_checkable
class CompletionProvider(Protocol):
    async def complete(self, prompt: List[Dict[str, str]], max_tokens: int) -> Completion: ...


@runtime_checkable
class ClassificationProvider(Protocol):
    async def classify(self, text: str) -> ClassificationResult: ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    async def notify(self, user_id: int, payload: Dict[str, Any]) -> None: ...


@runtime_checkable
class AccessPolicy(Protocol):
    def can_read(self, actor_id: Optional[int], employee_id: int) -> bool: ...
