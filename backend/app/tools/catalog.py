"""Default tool catalog backed by the platform gateway."""

from datetime import date

from pydantic import BaseModel, Field, model_validator

from backend.app.adapters.platform import PlatformGateway
from backend.app.models.common import UseCase
from backend.app.models.drafts import BoatSummary, JourneySummary, SkipperProfile
from backend.app.models.platform import Journey, JourneyTemplate, Leg, RegistrationInfo, UserProfile
from backend.app.tools.registry import ToolRegistry, ToolSpec

SEARCH = UseCase.search_sailing_trips
PROFILE = UseCase.improve_profile
REGISTER = UseCase.register

EXPERIENCE_LEVELS = {
    1: "Beginner",
    2: "Competent Crew",
    3: "Coastal Skipper",
    4: "Offshore Skipper",
}


class ToolLookupError(LookupError):
    """Referenced platform entity does not exist."""


# Inputs


class SearchLegsInput(BaseModel):
    region: str | None = None
    start_after: date | None = None
    max_experience_level: int | None = Field(None, ge=1, le=4)


class LocationInput(BaseModel):
    location: str = Field(..., min_length=2)


class LegRefInput(BaseModel):
    leg_id: str | None = None
    leg_name: str | None = None

    @model_validator(mode="after")
    def require_reference(self) -> "LegRefInput":
        if not self.leg_id and not self.leg_name:
            raise ValueError("leg_id or leg_name is required")
        return self


class LegIdInput(BaseModel):
    leg_id: str


class JourneyIdInput(BaseModel):
    journey_id: str


class UserRefInput(BaseModel):
    user_id: str | None = None


class ProfileSuggestionInput(BaseModel):
    suggested_value: str | list[str]
    reason: str = ""


class NoInput(BaseModel):
    pass


class UpdateProfileInput(SkipperProfile):
    owner_id: str | None = None


class CreateBoatInput(BoatSummary):
    owner_id: str | None = None
    make_model: str


class JourneyRouteInput(JourneySummary):
    start_location: str
    end_location: str


# Outputs


class LegList(BaseModel):
    legs: list[Leg]
    count: int


class LegDetails(BaseModel):
    leg: Leg


class JourneyDetails(BaseModel):
    journey: Journey


class ProfileLookup(BaseModel):
    profile: UserProfile | None


class ProfileSuggestion(BaseModel):
    field: str
    suggested_value: str | list[str]
    reason: str


class RegistrationSuggestion(BaseModel):
    leg_id: str
    leg_name: str
    open: bool


class ExperienceLevels(BaseModel):
    levels: dict[int, str]


class SavedProfile(BaseModel):
    user_id: str


class CreatedBoat(BaseModel):
    boat_id: str


def build_default_registry(gateway: PlatformGateway) -> ToolRegistry:
    """Register the default tools against a gateway and freeze the registry."""

    async def search_legs(args: SearchLegsInput) -> LegList:
        legs = await gateway.search_legs(
            region=args.region,
            start_after=args.start_after,
            max_experience_level=args.max_experience_level,
        )
        return LegList(legs=legs, count=len(legs))

    async def search_legs_by_location(args: LocationInput) -> LegList:
        legs = await gateway.search_legs_by_location(args.location)
        return LegList(legs=legs, count=len(legs))

    async def get_leg_details(args: LegRefInput) -> LegDetails:
        if args.leg_id:
            leg = await gateway.get_leg(args.leg_id)
        else:
            leg = await gateway.find_leg(args.leg_name or "")
        if leg is None:
            raise ToolLookupError(f"No leg matching {args.leg_id or args.leg_name!r}")
        return LegDetails(leg=leg)

    async def get_journey_details(args: JourneyIdInput) -> JourneyDetails:
        journey = await gateway.get_journey(args.journey_id)
        if journey is None:
            raise ToolLookupError(f"No journey {args.journey_id!r}")
        return JourneyDetails(journey=journey)

    async def get_leg_registration_info(args: LegIdInput) -> RegistrationInfo:
        info = await gateway.get_registration_info(args.leg_id)
        if info is None:
            raise ToolLookupError(f"No leg {args.leg_id!r}")
        return info

    async def suggest_register_for_leg(args: LegIdInput) -> RegistrationSuggestion:
        leg = await gateway.get_leg(args.leg_id)
        info = await gateway.get_registration_info(args.leg_id)
        if leg is None or info is None:
            raise ToolLookupError(f"No leg {args.leg_id!r}")
        return RegistrationSuggestion(leg_id=leg.id, leg_name=leg.name, open=info.open)

    async def get_user_profile(args: UserRefInput) -> ProfileLookup:
        profile = await gateway.get_user_profile(args.user_id) if args.user_id else None
        return ProfileLookup(profile=profile)

    async def get_experience_level_definitions(args: NoInput) -> ExperienceLevels:
        return ExperienceLevels(levels=EXPERIENCE_LEVELS)

    def profile_suggestion(field: str):  # type: ignore[no-untyped-def]
        async def suggest(args: ProfileSuggestionInput) -> ProfileSuggestion:
            return ProfileSuggestion(field=field, suggested_value=args.suggested_value, reason=args.reason)

        return suggest

    async def generate_journey_route(args: JourneyRouteInput) -> JourneyTemplate:
        return await gateway.propose_journey(
            start_location=args.start_location,
            end_location=args.end_location,
            waypoints=args.waypoints or [],
            start_date=args.start_date,
            end_date=args.end_date,
        )

    async def update_user_profile(args: UpdateProfileInput) -> SavedProfile:
        fields = args.model_dump(exclude={"owner_id"}, exclude_none=True)
        user_id = await gateway.save_user_profile(args.owner_id, fields)
        return SavedProfile(user_id=user_id)

    async def create_boat(args: CreateBoatInput) -> CreatedBoat:
        fields = args.model_dump(exclude={"owner_id"}, exclude_none=True)
        return CreatedBoat(boat_id=await gateway.create_boat(args.owner_id, fields))

    registry = ToolRegistry(
        [
            ToolSpec(
                name="search_legs",
                description="Search open sailing legs by region, start date and experience",
                input_model=SearchLegsInput,
                output_model=LegList,
                use_cases=frozenset({SEARCH, REGISTER}),
                handler=search_legs,
            ),
            ToolSpec(
                name="search_legs_by_location",
                description="Search legs departing from or arriving at a location",
                input_model=LocationInput,
                output_model=LegList,
                use_cases=frozenset({SEARCH, REGISTER}),
                handler=search_legs_by_location,
            ),
            ToolSpec(
                name="get_leg_details",
                description="Fetch one leg by id or name",
                input_model=LegRefInput,
                output_model=LegDetails,
                use_cases=frozenset({SEARCH, REGISTER}),
                handler=get_leg_details,
                fatal_on_failure=True,
            ),
            ToolSpec(
                name="get_journey_details",
                description="Fetch a journey and its legs",
                input_model=JourneyIdInput,
                output_model=JourneyDetails,
                use_cases=frozenset({SEARCH}),
                handler=get_journey_details,
            ),
            ToolSpec(
                name="get_leg_registration_info",
                description="Registration requirements for a leg",
                input_model=LegIdInput,
                output_model=RegistrationInfo,
                use_cases=frozenset({REGISTER}),
                handler=get_leg_registration_info,
            ),
            ToolSpec(
                name="suggest_register_for_leg",
                description="Propose registering the user for a leg",
                input_model=LegIdInput,
                output_model=RegistrationSuggestion,
                use_cases=frozenset({REGISTER}),
                handler=suggest_register_for_leg,
                parallel_safe=False,
            ),
            ToolSpec(
                name="get_user_profile",
                description="Fetch the user's current profile",
                input_model=UserRefInput,
                output_model=ProfileLookup,
                use_cases=frozenset({PROFILE}),
                handler=get_user_profile,
            ),
            ToolSpec(
                name="get_experience_level_definitions",
                description="Experience level scale used for matching",
                input_model=NoInput,
                output_model=ExperienceLevels,
                use_cases=frozenset({PROFILE}),
                handler=get_experience_level_definitions,
            ),
            *(
                ToolSpec(
                    name=f"suggest_profile_update_{field}",
                    description=f"Suggest a new value for the profile's {field.replace('_', ' ')}",
                    input_model=ProfileSuggestionInput,
                    output_model=ProfileSuggestion,
                    use_cases=frozenset({PROFILE}),
                    handler=profile_suggestion(field),
                    parallel_safe=False,
                )
                for field in ("user_description", "certifications", "skills", "risk_level")
            ),
            # Module actions, only reachable from the sequencer
            ToolSpec(
                name="generate_journey_route",
                description="Propose a journey template with legs between the given stops",
                input_model=JourneyRouteInput,
                output_model=JourneyTemplate,
                use_cases=frozenset(),
                handler=generate_journey_route,
                parallel_safe=False,
                fatal_on_failure=True,
            ),
            ToolSpec(
                name="update_user_profile",
                description="Save the confirmed skipper profile",
                input_model=UpdateProfileInput,
                output_model=SavedProfile,
                use_cases=frozenset(),
                handler=update_user_profile,
                parallel_safe=False,
                fatal_on_failure=True,
            ),
            ToolSpec(
                name="create_boat",
                description="Create the confirmed boat",
                input_model=CreateBoatInput,
                output_model=CreatedBoat,
                use_cases=frozenset(),
                handler=create_boat,
                parallel_safe=False,
                fatal_on_failure=True,
            ),
        ]
    )
    return registry.freeze()
