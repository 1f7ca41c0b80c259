from typing import List, Optional
from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: str
    action: str
    description: str
    actor_name: Optional[str] = None
    subject_type: Optional[str] = None
    subject_id: Optional[str] = None
    subject_label: Optional[str] = None
    module: Optional[str] = None
    is_read: bool = False
    read_at: Optional[str] = None
    created_at: str


class NotificationListResponse(BaseModel):
    data: List[NotificationResponse] = []
    unread_count: int = 0
    total: int = 0


class MarkAllReadResponse(BaseModel):
    updated: int
