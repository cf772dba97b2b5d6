"""Local record model: gyms, routes, attempts and the Store that holds them.

Records are immutable pydantic models.  Field names are snake_case in Python
and camelCase in the persisted JSON document (``routeId``, ``createdAt`` ...),
which keeps documents written by older clients readable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from climbnotes.constants import STORE_VERSION, ClimbStyle, CompletionStyle
from climbnotes.utils.datetime_utils import parse_timestamp_ms


class SyncRecord(BaseModel, ABC):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    created_at: str
    updated_at: str | None = None

    @property
    @abstractmethod
    def key(self) -> str:
        """Identity used for matching, merging and tombstones."""

    @property
    def local_timestamp_ms(self) -> int | None:
        """Timestamp used to judge tombstones: updatedAt, else createdAt."""
        return parse_timestamp_ms(self.updated_at or self.created_at)


class Gym(SyncRecord):
    name: str

    @property
    def key(self) -> str:
        return gym_key(self.name)


class Route(SyncRecord):
    route_id: str
    gym_name: str
    rope_number: str
    color: str
    set_date: str
    grade: str

    @property
    def key(self) -> str:
        return self.route_id


class Attempt(SyncRecord):
    attempt_id: str
    route_id: str
    climb_date: str
    attempt_index: int = 0
    climb_style: ClimbStyle = ClimbStyle.TOP_ROPE
    completion_style: CompletionStyle = CompletionStyle.ATTEMPT
    notes: str = ""

    @property
    def key(self) -> str:
        return self.attempt_id

    @field_validator("climb_style", mode="before")
    @classmethod
    def _default_climb_style(cls, value: Any) -> Any:
        if value not in set(ClimbStyle):
            return ClimbStyle.TOP_ROPE
        return value

    @field_validator("completion_style", mode="before")
    @classmethod
    def _default_completion_style(cls, value: Any) -> Any:
        if value not in set(CompletionStyle):
            return CompletionStyle.ATTEMPT
        return value

    @field_validator("notes", mode="before")
    @classmethod
    def _default_notes(cls, value: Any) -> Any:
        return "" if value is None else value


class Store(BaseModel):
    """The whole local replica for one user."""

    model_config = ConfigDict(frozen=True)

    version: int = STORE_VERSION
    gyms: list[Gym] = []
    routes: list[Route] = []
    attempts: list[Attempt] = []

    @classmethod
    def empty(cls) -> Store:
        return cls()

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Store:
        """Load a persisted JSON document, filling in fields older clients omitted.

        Raises:
            pydantic.ValidationError: If the document is not a Store.
        """
        return cls.model_validate(
            {
                "version": document.get("version") or STORE_VERSION,
                "gyms": document.get("gyms") or [],
                "routes": document.get("routes") or [],
                "attempts": document.get("attempts") or [],
            }
        )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def gym_key(name: str) -> str:
    """Gym identity: the case-insensitive name."""
    return name.lower()
