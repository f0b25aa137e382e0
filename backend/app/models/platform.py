"""Platform data shapes returned by the external collaborators behind tools."""

from datetime import date
from typing import Any

from pydantic import BaseModel, Field


class Leg(BaseModel):
    """One sailing leg of a journey."""

    id: str
    name: str
    journey_id: str
    journey_name: str
    region: str
    start_location: str
    end_location: str
    start_date: date
    end_date: date
    min_experience_level: int = Field(1, ge=1, le=4)
    risk_level: list[str] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    crew_needed: int = 0
    # Opaque to the core; computed by the platform
    match_percentage: int | None = None


class Journey(BaseModel):
    """A journey made of one or more legs."""

    id: str
    name: str
    boat_name: str
    skipper_name: str
    description: str = ""
    leg_ids: list[str] = Field(default_factory=list)


class RegistrationInfo(BaseModel):
    """Registration requirements for a leg."""

    leg_id: str
    open: bool
    requires_questions: bool = False
    questions: list[str] = Field(default_factory=list)
    auto_approval: bool = False


class UserProfile(BaseModel):
    """Platform profile of a user."""

    user_id: str
    full_name: str | None = None
    user_description: str | None = None
    experience_level: int | None = None
    certifications: str | None = None
    skills: list[str] = Field(default_factory=list)
    risk_level: list[str] = Field(default_factory=list)
    sailing_preferences: str | None = None


class JourneyTemplate(BaseModel):
    """Proposed journey with generated legs."""

    name: str
    start_location: str
    end_location: str
    start_date: date | None = None
    end_date: date | None = None
    legs: list[dict[str, Any]] = Field(default_factory=list)
