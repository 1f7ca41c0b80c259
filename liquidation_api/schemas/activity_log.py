from typing import Optional, List
from pydantic import BaseModel


class ActivityLogResponse(BaseModel):
    id: str
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    action: str
    description: Optional[str] = None
    entity_type: str
    entity_id: Optional[str] = None
    module: Optional[str] = None
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    changed_fields: Optional[List[str]] = None
    request_id: Optional[str] = None
    created_at: str

    model_config = {"from_attributes": True}
