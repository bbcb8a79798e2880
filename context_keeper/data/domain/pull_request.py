from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PullRequest(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: int
    number: int
    title: str
    body: str = ""
    author: str = ""
    state: str  # open/closed/merged
    created_at: datetime
    merged_at: datetime | None = None
    files_changed: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
