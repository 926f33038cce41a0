from datetime import datetime
from typing import Optional

from pydantic import Field

from app.schemas.common import CamelModel
from app.schemas.match import DisplayProfile


class InsightItem(CamelModel):
    entity_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    popularity: Optional[float] = None


class ProfileSaveRequest(CamelModel):
    user_id: Optional[str] = None
    interests: dict[str, list[str]] = {}
    insights: dict[str, list[InsightItem]] = {}
    display_name: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    contact: Optional[str] = None
    enrich: bool = False  # resolve insights through Qloo when none are sent


class ProfileSaveResponse(CamelModel):
    user_id: str
    interest_count: int
    insight_count: int
    enriched: bool = False


class InterestRow(CamelModel):
    category: str
    interest_name: str
    entity_id: Optional[str] = None


class InsightRow(CamelModel):
    category: str
    insight_type: str
    entity_id: str
    entity_name: str
    popularity_score: float


class ProfileResponse(CamelModel):
    user_id: str
    interests: dict[str, list[str]]
    insights: dict[str, list[dict]]
    display_profile: DisplayProfile
    contact: Optional[str] = None
    profile_completed: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    interest_rows: list[InterestRow] = []
    insight_rows: list[InsightRow] = []


class UserIdExistsResponse(CamelModel):
    user_id: str
    exists: bool


class TasteProfile(CamelModel):
    headline: str
    description: str = ""
    vibe: str = ""
    traits: list[str] = []
    compatibility: str = ""
    emoji: str = ""
    generated_at: Optional[datetime] = None


class TasteProfileResponse(CamelModel):
    user_id: str
    taste_profile: Optional[TasteProfile] = None
    source: Optional[str] = None  # "generated" | "fallback" right after generation
