from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Repository(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: int | None = None
    name: str
    full_name: str
    owner: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
