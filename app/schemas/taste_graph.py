from typing import Any, Optional

from pydantic import Field

from app.schemas.common import CamelModel


class TasteSearchRequest(CamelModel):
    query: str = Field(min_length=1)
    type: Optional[str] = None
    take: int = Field(20, ge=1, le=50)


class TasteInsightsRequest(CamelModel):
    entity_id: str = Field(min_length=1)
    filter_type: Optional[str] = None
    take: int = Field(10, ge=1, le=50)


class TasteGraphResponse(CamelModel):
    data: dict[str, Any]
