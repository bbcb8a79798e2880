from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Issue(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: int
    title: str
    body: str = ""
    author: str = ""
    state: str  # open/closed
    created_at: datetime
    closed_at: datetime | None = None
    labels: list[str] = Field(default_factory=list)
