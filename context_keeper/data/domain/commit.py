from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Commit(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    sha: str = Field(min_length=40, max_length=40, pattern=r"^[0-9a-f]{40}$")
    message: str
    author: str = ""
    created_at: datetime
    files_changed: list[str] = Field(default_factory=list)
