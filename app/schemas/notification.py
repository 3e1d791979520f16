from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

# review_status: draft ready / submitted / approved; sentiment_alert: routed SentimentAlert
NotificationType = Literal["review_status", "sentiment_alert", "info"]


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    message: str
    type: NotificationType = "info"
    link: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    created_at: datetime

    @field_validator("payload", mode="before")
    @classmethod
    def empty_payload(cls, value):
        return value or {}

    @computed_field
    @property
    def review_id(self) -> Optional[int]:
        return self.payload.get("review_id") if self.type == "review_status" else None

    @computed_field
    @property
    def alert_id(self) -> Optional[int]:
        return self.payload.get("alert_id") if self.type == "sentiment_alert" else None

    @computed_field
    @property
    def severity(self) -> Optional[str]:
        return self.payload.get("severity") if self.type == "sentiment_alert" else None


class NotificationInbox(BaseModel):
    unread: int
    items: List[NotificationResponse] = Field(default_factory=list)
