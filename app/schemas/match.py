from typing import Optional

from pydantic import Field

from app.schemas.common import CamelModel


class FindMatchesRequest(CamelModel):
    user_id: str = Field(min_length=1)


class MatchResultSchema(CamelModel):
    candidate_user_id: str
    match_score: float = Field(ge=0.0, le=1.0)
    shared_fields: list[str]
    shared_entities: dict[str, list[str]]
    # Sum of per-category samples (max 5 each): a lower bound on true overlap.
    total_shared_items: int


class FindMatchesResponse(CamelModel):
    matches: list[MatchResultSchema]
    total_candidates: int


class DisplayProfile(CamelModel):
    user_id: Optional[str] = None
    name: str = ""
    bio: str = ""
    location: str = ""


class ExplainedMatch(MatchResultSchema):
    user: DisplayProfile
    explanation: str
    tags: list[str]
    explanation_source: str  # cache / generated / fallback


class ExplainedMatchesResponse(CamelModel):
    matches: list[ExplainedMatch]
    total_candidates: int


class CompatibilityRequest(CamelModel):
    user_id: str = Field(min_length=1)
    match: MatchResultSchema
    match_user_profile: DisplayProfile
    current_user_interests: dict[str, list[str]] = {}


class CompatibilityResponse(CamelModel):
    candidate_user_id: str
    explanation: str
    tags: list[str]
    source: str
