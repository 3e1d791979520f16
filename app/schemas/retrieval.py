from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class RetrievedSnippet(BaseModel):
    source_id: str  # vector id, e.g. "feedback:12"
    source_type: str  # okr, feedback, review
    text: str
    similarity_score: float = Field(ge=-1.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    timestamp: Optional[datetime] = None


class RetrievedContext(BaseModel):
    snippets: List[RetrievedSnippet] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.snippets)

    @property
    def mean_similarity(self) -> float:
        if not self.snippets:
            return 0.0
        return sum(s.similarity_score for s in self.snippets) / len(self.snippets)


class RetrievalResult(BaseModel):
    context: RetrievedContext = Field(default_factory=RetrievedContext)
    degraded: bool = False
    error: Optional[str] = None
