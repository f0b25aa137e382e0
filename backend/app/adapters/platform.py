"""Platform gateway - legs, journeys, registrations and profiles.

The real platform (database, geocoding, match scoring) is an external
collaborator. The fixture gateway serves the same contract from a JSON file
for local runs and tests.
"""

import json
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Protocol

from backend.app.models.platform import (
    Journey,
    JourneyTemplate,
    Leg,
    RegistrationInfo,
    UserProfile,
)

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"


class PlatformGateway(Protocol):
    """Contract the tool catalog needs from the platform."""

    async def search_legs(
        self,
        *,
        region: str | None = None,
        start_after: date | None = None,
        max_experience_level: int | None = None,
    ) -> list[Leg]: ...

    async def search_legs_by_location(self, location: str) -> list[Leg]: ...

    async def get_leg(self, leg_id: str) -> Leg | None: ...

    async def find_leg(self, query: str) -> Leg | None: ...

    async def get_journey(self, journey_id: str) -> Journey | None: ...

    async def get_registration_info(self, leg_id: str) -> RegistrationInfo | None: ...

    async def get_user_profile(self, user_id: str) -> UserProfile | None: ...

    async def save_user_profile(self, user_id: str | None, fields: dict[str, Any]) -> str: ...

    async def create_boat(self, owner_id: str | None, fields: dict[str, Any]) -> str: ...

    async def propose_journey(
        self,
        *,
        start_location: str,
        end_location: str,
        waypoints: list[str],
        start_date: date | None,
        end_date: date | None,
    ) -> JourneyTemplate: ...


class FixturePlatformGateway:
    """PlatformGateway backed by fixtures/platform.json."""

    def __init__(self, fixtures_path: Path | None = None) -> None:
        path = fixtures_path or FIXTURES_DIR / "platform.json"
        with open(path) as f:
            data = json.load(f)

        self._legs = {leg["id"]: Leg.model_validate(leg) for leg in data.get("legs", [])}
        self._journeys = {j["id"]: Journey.model_validate(j) for j in data.get("journeys", [])}
        self._registration = {
            leg_id: RegistrationInfo(leg_id=leg_id, **info)
            for leg_id, info in data.get("registration", {}).items()
        }
        self._profiles = {
            user_id: UserProfile(user_id=user_id, **profile)
            for user_id, profile in data.get("profiles", {}).items()
        }
        self._boats: dict[str, dict[str, Any]] = {}

    async def search_legs(
        self,
        *,
        region: str | None = None,
        start_after: date | None = None,
        max_experience_level: int | None = None,
    ) -> list[Leg]:
        legs = list(self._legs.values())
        if region:
            legs = [leg for leg in legs if leg.region == region.lower()]
        if start_after:
            legs = [leg for leg in legs if leg.start_date >= start_after]
        if max_experience_level is not None:
            legs = [leg for leg in legs if leg.min_experience_level <= max_experience_level]
        return sorted(legs, key=lambda leg: (leg.start_date, leg.id))

    async def search_legs_by_location(self, location: str) -> list[Leg]:
        needle = location.lower()
        return sorted(
            (
                leg
                for leg in self._legs.values()
                if needle in leg.start_location.lower()
                or needle in leg.end_location.lower()
                or needle == leg.region
            ),
            key=lambda leg: (leg.start_date, leg.id),
        )

    async def get_leg(self, leg_id: str) -> Leg | None:
        return self._legs.get(leg_id)

    async def find_leg(self, query: str) -> Leg | None:
        """First leg (by start date) whose name, region or journey matches every query word."""
        words = [w for w in query.lower().split() if w not in ("the", "leg")]
        if not words:
            return None
        for leg in sorted(self._legs.values(), key=lambda leg: (leg.start_date, leg.id)):
            haystack = f"{leg.name} {leg.region} {leg.journey_name}".lower()
            if all(w in haystack for w in words):
                return leg
        return None

    async def get_journey(self, journey_id: str) -> Journey | None:
        return self._journeys.get(journey_id)

    async def get_registration_info(self, leg_id: str) -> RegistrationInfo | None:
        if leg_id not in self._legs:
            return None
        return self._registration.get(leg_id, RegistrationInfo(leg_id=leg_id, open=True))

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        return self._profiles.get(user_id)

    async def save_user_profile(self, user_id: str | None, fields: dict[str, Any]) -> str:
        key = user_id or f"anonymous-{len(self._profiles) + 1}"
        current = self._profiles.get(key, UserProfile(user_id=key))
        self._profiles[key] = current.model_copy(update=fields)
        return key

    async def create_boat(self, owner_id: str | None, fields: dict[str, Any]) -> str:
        boat_id = f"boat-{len(self._boats) + 1}"
        self._boats[boat_id] = {"owner_id": owner_id, **fields}
        return boat_id

    async def propose_journey(
        self,
        *,
        start_location: str,
        end_location: str,
        waypoints: list[str],
        start_date: date | None,
        end_date: date | None,
    ) -> JourneyTemplate:
        """One leg per hop between consecutive stops, dates spread evenly."""
        stops = [start_location, *waypoints, end_location]
        hops = len(stops) - 1
        days_per_hop = 0
        if start_date and end_date and end_date >= start_date:
            days_per_hop = (end_date - start_date).days // hops

        legs = []
        for i in range(hops):
            leg: dict[str, Any] = {"name": f"{stops[i]} to {stops[i + 1]}", "start": stops[i], "end": stops[i + 1]}
            if start_date:
                leg["start_date"] = (start_date + timedelta(days=i * days_per_hop)).isoformat()
            legs.append(leg)

        return JourneyTemplate(
            name=f"{start_location.split(',')[0]} to {end_location.split(',')[0]}",
            start_location=start_location,
            end_location=end_location,
            start_date=start_date,
            end_date=end_date,
            legs=legs,
        )
