"""Snapshot document model shared by the server and the sync client.

The wire and storage format is camelCase JSON; Python code uses the
snake_case attribute names. Parsing normalizes the document so that every
``Snapshot`` instance already satisfies the structural invariants
(exposure cap, deduplicated category lists, ...). Missing or ``null``
values fall back to defaults; structurally wrong values raise a pydantic
``ValidationError``.
"""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from foodsync.utils.timestamps import to_timestamp

SNAPSHOT_SCHEMA_VERSION = 1
MAX_EXPOSURE_EVENTS = 3

THEMES = ("light", "dark", "system")
LANGUAGES = ("es", "en")


def _pick(raw: Any, camel: str, snake: str) -> Any:
    """Read a field from a raw dict (either spelling) or an already-built model."""
    if isinstance(raw, BaseModel):
        return getattr(raw, snake, None)
    if isinstance(raw, dict):
        value = raw.get(camel)
        return raw.get(snake) if value is None else value
    return None


def normalize_exposure_events(events: Any) -> List[str]:
    """Dedupe, sort ascending and keep the oldest ``MAX_EXPOSURE_EVENTS`` stamps.

    Accepts plain ISO strings and the legacy ``{"checkedAt": ...}`` objects.
    """
    values: List[str] = []
    for event in events or []:
        if isinstance(event, dict):
            event = event.get("checkedAt")
        if isinstance(event, str) and event:
            values.append(event)
    unique = list(dict.fromkeys(values))
    unique.sort(key=to_timestamp)
    return unique[:MAX_EXPOSURE_EVENTS]


def normalize_category_list(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    cleaned = [value.strip().lower() for value in values if isinstance(value, str)]
    return list(dict.fromkeys(value for value in cleaned if value))


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # null means "use the default", same as a missing key
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class SnapshotSettings(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow")

    theme: str = "system"
    language: str = "es"
    hide_introduced: bool = False
    show_hidden: bool = False
    show_not_suitable_foods: bool = False

    @field_validator("theme", mode="before")
    @classmethod
    def _known_theme(cls, value: Any) -> str:
        return value if value in THEMES else "system"

    @field_validator("language", mode="before")
    @classmethod
    def _known_language(cls, value: Any) -> str:
        return value if value in LANGUAGES else "es"


class ItemState(_CamelModel):
    """Per-item tracking state."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow")

    id: str = ""
    hidden: bool = False
    notes: str = ""
    exposure_events: List[str] = Field(default_factory=list)
    # custom image override group
    custom_image_url: str = ""
    custom_image_attribution: str = ""
    custom_image_attribution_url: str = ""
    image_source: str = ""
    image_generated_at: str = ""
    # AI-generated content group
    description: str = ""
    reactions: str = ""
    description_generated_at: str = ""
    description_model: str = ""
    updated_at: str = ""

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        legacy_ai = data.pop("ai", None)
        if isinstance(legacy_ai, dict):
            for field, legacy_key in (
                ("description", "description"),
                ("reactions", "reactions"),
                ("descriptionGeneratedAt", "generatedAt"),
                ("descriptionModel", "model"),
            ):
                if data.get(field) is None and legacy_ai.get(legacy_key) is not None:
                    data[field] = legacy_ai[legacy_key]
        legacy_exposures = data.pop("exposures", None)
        if data.get("exposureEvents") is None and data.get("exposure_events") is None and legacy_exposures:
            data["exposureEvents"] = legacy_exposures
        return data

    @field_validator("exposure_events", mode="before")
    @classmethod
    def _normalize_exposures(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return normalize_exposure_events(value)


class CustomEntity(_CamelModel):
    """A user-defined trackable item (not part of the built-in catalog)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow")

    id: str
    name: str
    category: str
    allergens: List[str] = Field(default_factory=list)
    image_url: str = ""
    image_attribution: str = ""
    image_attribution_url: str = ""

    @field_validator("allergens", mode="before")
    @classmethod
    def _allergen_list(cls, value: Any) -> Any:
        return value if isinstance(value, list) else []


class CategoryOverride(_CamelModel):
    """Custom image for a whole category."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow")

    image_url: str
    image_attribution: str = ""
    image_attribution_url: str = ""
    image_source: str = ""


class SnapshotMeta(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow")

    order_updated_at: str = ""


class Snapshot(_CamelModel):
    """The full synchronized document for one profile."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    profile_id: str = ""
    profile_name: str = ""
    share_token: str = ""
    revision: int = Field(default=0, ge=0)
    updated_at: str = ""
    settings: SnapshotSettings = Field(default_factory=SnapshotSettings)
    items: Dict[str, ItemState] = Field(default_factory=dict)
    order: List[str] = Field(default_factory=list)
    custom_entities: Dict[str, CustomEntity] = Field(default_factory=dict)
    custom_categories: List[str] = Field(default_factory=list)
    category_order: List[str] = Field(default_factory=list)
    category_overrides: Dict[str, CategoryOverride] = Field(default_factory=dict)
    meta: SnapshotMeta = Field(default_factory=SnapshotMeta)

    @field_validator("items", mode="before")
    @classmethod
    def _item_ids_from_keys(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        items: Dict[str, Any] = {}
        for key, raw in value.items():
            if isinstance(raw, dict) and not _pick(raw, "id", "id"):
                raw = {**raw, "id": key}
            items[key] = raw
        return items

    @field_validator("custom_entities", mode="before")
    @classmethod
    def _complete_custom_entities(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            return value
        entities: Dict[str, Any] = {}
        for key, raw in value.items():
            if not _pick(raw, "name", "name") or not _pick(raw, "category", "category"):
                continue
            if isinstance(raw, dict):
                raw = {**raw, "id": key}
            entities[key] = raw
        return entities

    @field_validator("custom_categories", "category_order", mode="before")
    @classmethod
    def _normalize_categories(cls, value: Any) -> List[str]:
        return normalize_category_list(value)

    @field_validator("category_overrides", mode="before")
    @classmethod
    def _normalize_overrides(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        overrides: Dict[str, Any] = {}
        for category, raw in value.items():
            key = category.strip().lower() if isinstance(category, str) else ""
            if not key or not _pick(raw, "imageUrl", "image_url"):
                continue
            overrides[key] = raw
        return overrides

    @property
    def effective_order_updated_at(self) -> str:
        """Effective order stamp: the dedicated one, else the snapshot stamp."""
        return self.meta.order_updated_at or self.updated_at

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, data: Any) -> "Snapshot":
        return cls.model_validate(data)
