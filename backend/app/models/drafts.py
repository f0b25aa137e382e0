"""Draft record models and the typed field bags behind each data type."""

from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, computed_field

from backend.app.models.common import ConfirmationPhase, DataType, DraftStatus, SectionLabel, SectionValue


class _FieldBag(BaseModel):
    """Base for typed field bags. Every field is optional; unknown keys are dropped."""

    model_config = ConfigDict(extra="ignore")


class ProfileSummary(_FieldBag):
    """Crew member profile."""

    full_name: str | None = None
    user_description: str | None = None
    experience_level: int | None = Field(None, ge=1, le=4, description="1=Beginner .. 4=Offshore Skipper")
    certifications: str | None = None
    skills: list[str] | None = None
    risk_level: list[str] | None = None
    sailing_preferences: str | None = None


class BoatSummary(_FieldBag):
    """Boat details gathered during owner onboarding."""

    boat_name: str | None = None
    make_model: str | None = None
    boat_type: str | None = None
    home_port: str | None = None
    country_flag: str | None = None
    year_built: int | None = Field(None, ge=1800, le=2100)
    loa_m: float | None = Field(None, gt=0)
    capacity: int | None = Field(None, gt=0)


class JourneySummary(_FieldBag):
    """Journey or leg the user is planning or registering for."""

    leg_id: str | None = None
    leg_name: str | None = None
    journey_id: str | None = None
    journey_name: str | None = None
    start_location: str | None = None
    end_location: str | None = None
    waypoints: list[str] | None = None
    start_date: date | None = None
    end_date: date | None = None
    risk_level: list[str] | None = None
    notes: str | None = None


class SkipperProfile(_FieldBag):
    """Skipper/owner's own profile."""

    full_name: str | None = None
    user_description: str | None = None
    experience_level: int | None = Field(None, ge=1, le=4)
    certifications: str | None = None
    skills: list[str] | None = None
    risk_level: list[str] | None = None
    boat_make_model: str | None = None
    home_port: str | None = None


class CrewRequirements(_FieldBag):
    """What the skipper wants from crew."""

    skills: list[str] | None = None
    min_experience_level: int | None = Field(None, ge=1, le=4)
    risk_level: list[str] | None = None
    cost_model: str | None = None
    cost_info: str | None = None
    crew_size: int | None = Field(None, gt=0)


DATA_TYPE_MODELS: dict[DataType, type[_FieldBag]] = {
    DataType.profile_summary: ProfileSummary,
    DataType.boat_summary: BoatSummary,
    DataType.journey_summary: JourneySummary,
    DataType.skipper_profile: SkipperProfile,
    DataType.crew_requirements: CrewRequirements,
}

REQUIRED_FIELDS: dict[DataType, tuple[str, ...]] = {
    DataType.profile_summary: ("full_name", "experience_level"),
    DataType.boat_summary: ("make_model", "home_port"),
    DataType.journey_summary: ("start_location", "end_location"),
    DataType.skipper_profile: ("full_name", "experience_level"),
    DataType.crew_requirements: ("min_experience_level",),
}

# Which labelled section a confirmed draft is written to
SECTION_FOR_DATA_TYPE: dict[DataType, SectionLabel] = {
    DataType.profile_summary: SectionLabel.skipper_profile,
    DataType.skipper_profile: SectionLabel.skipper_profile,
    DataType.crew_requirements: SectionLabel.crew_requirements,
    DataType.journey_summary: SectionLabel.journey_details,
    DataType.boat_summary: SectionLabel.skipper_profile,
}

# Sub-bag of the skipper_profile section owned by boat drafts
BOAT_KEY = "boat"


def section_slice(data_type: DataType, value: SectionValue) -> SectionValue:
    """The part of a section a data type reads and writes.

    Boat drafts own ``skipper_profile["boat"]``; profile drafts own the rest
    of that section. Other types own their whole section.
    """
    if data_type == DataType.boat_summary:
        return value.get(BOAT_KEY) if isinstance(value, dict) else None
    if SECTION_FOR_DATA_TYPE[data_type] == SectionLabel.skipper_profile and isinstance(value, dict):
        return {k: v for k, v in value.items() if k != BOAT_KEY}
    return value


def merge_into_section(data_type: DataType, current: SectionValue, fields: dict[str, Any]) -> SectionValue:
    """Section value after confirming ``fields`` for a data type.

    Only the slice the data type owns is replaced, so confirming a boat keeps
    the skipper's profile fields and confirming a profile keeps the boat.
    """
    fields = dict(fields)
    if data_type == DataType.boat_summary:
        if isinstance(current, dict):
            merged = dict(current)
        elif isinstance(current, str) and current.strip():
            # Free-text profile becomes the description
            merged = {"user_description": current.strip()}
        else:
            merged = {}
        merged[BOAT_KEY] = fields
        return merged
    if SECTION_FOR_DATA_TYPE[data_type] == SectionLabel.skipper_profile and isinstance(current, dict):
        if BOAT_KEY in current:
            return {**fields, BOAT_KEY: current[BOAT_KEY]}
    return fields


def normalize_fields(data_type: DataType, raw: dict[str, Any]) -> dict[str, Any]:
    """Validate a raw field bag against the data type's model.

    Keys the model does not know are dropped, and so are values that fail
    validation; the rest is returned JSON-ready with unset fields omitted.
    """
    model = DATA_TYPE_MODELS[data_type]
    candidate = {k: v for k, v in raw.items() if k in model.model_fields and v is not None}

    while True:
        try:
            return model.model_validate(candidate).model_dump(mode="json", exclude_none=True)
        except ValidationError as e:
            bad = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
            if not bad & candidate.keys():
                raise
            for key in bad:
                candidate.pop(key, None)


def missing_required(data_type: DataType, fields: dict[str, Any]) -> list[str]:
    """Required fields of the data type that are unset in the bag."""
    return [name for name in REQUIRED_FIELDS[data_type] if fields.get(name) in (None, "", [])]


_PHASE_STATUS = {
    ConfirmationPhase.proposed: DraftStatus.proposed,
    ConfirmationPhase.presented: DraftStatus.proposed,
    ConfirmationPhase.edit_requested: DraftStatus.editing,
    ConfirmationPhase.confirmed: DraftStatus.confirmed,
    ConfirmationPhase.persisted: DraftStatus.confirmed,
    ConfirmationPhase.discarded: DraftStatus.discarded,
}


class DraftRecord(BaseModel):
    """Provisional typed snapshot of extracted data awaiting confirmation."""

    id: UUID = Field(default_factory=uuid4)
    data_type: DataType
    fields: dict[str, Any] = Field(default_factory=dict)
    revision: int = Field(1, ge=1)
    phase: ConfirmationPhase = ConfirmationPhase.proposed
    missing_fields: list[str] = Field(default_factory=list)
    edit_history: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> DraftStatus:
        """Draft status derived from the confirmation phase."""
        return _PHASE_STATUS[self.phase]

    @property
    def is_open(self) -> bool:
        return self.status in (DraftStatus.proposed, DraftStatus.editing)

    @property
    def section(self) -> SectionLabel:
        return SECTION_FOR_DATA_TYPE[self.data_type]

    def with_phase(self, phase: ConfirmationPhase) -> "DraftRecord":
        """Copy of the draft moved to another phase."""
        return self.model_copy(update={"phase": phase, "updated_at": datetime.now(UTC)})
