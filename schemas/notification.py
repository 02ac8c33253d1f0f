from datetime import datetime
from pydantic import BaseModel
from typing import Any, Optional


class NotificationOut(BaseModel):
    id: int
    user_id: Optional[int] = None
    type: str
    title: str
    message: str
    data: Optional[Any] = None
    read: bool
    triggered_by: str
    created_at: datetime

    class Config:
        from_attributes = True
