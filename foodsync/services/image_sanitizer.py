# foodsync/services/image_sanitizer.py
# Server-side hygiene pass over custom image overrides.
# Runs on every accepted push, before the snapshot is stored.

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import unquote, urlsplit

from foodsync.schemas.snapshot import CategoryOverride, ItemState, Snapshot


@dataclass(frozen=True)
class ImageProvider:
    match: str
    label: str
    source: str


@dataclass(frozen=True)
class InferredAttribution:
    attribution: str
    attribution_url: str
    source: str


KNOWN_PROVIDERS = (
    ImageProvider("wikipedia.org", "Wikipedia", "wikipedia-url"),
    ImageProvider("wikimedia.org", "Wikimedia Commons", "wikimedia-url"),
    ImageProvider("unsplash.com", "Unsplash", "unsplash-url"),
    ImageProvider("pexels.com", "Pexels", "pexels-url"),
    ImageProvider("pixabay.com", "Pixabay", "pixabay-url"),
    ImageProvider("openverse.org", "Openverse", "openverse-url"),
    ImageProvider("pxhere.com", "pxhere", "pxhere-url"),
)

# Source names written by older clients
LEGACY_SOURCES: Dict[str, str] = {
    "manual-url-scan": "url-scan",
    "wikipedia-manual-url": "wikipedia-url",
    "wikimedia commons-manual-url": "wikimedia-url",
    "unsplash-manual-url": "unsplash-url",
    "pexels-manual-url": "pexels-url",
    "pixabay-manual-url": "pixabay-url",
    "openverse-manual-url": "openverse-url",
    "pxhere-manual-url": "pxhere-url",
}

_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)
_EXTENSION = re.compile(r"\.[a-z0-9]{2,5}$", re.IGNORECASE)


def _is_http_url(url: str) -> bool:
    return bool(_HTTP_URL.match(url))


def _title_from_path(path: str) -> str:
    segments = [segment for segment in unquote(path or "").split("/") if segment]
    raw_title = segments[-1] if segments else ""
    title = _EXTENSION.sub("", raw_title)
    title = re.sub(r"[_-]+", " ", title)
    return re.sub(r"\s+", " ", title).strip()


def infer_attribution_from_url(raw_url: str) -> Optional[InferredAttribution]:
    """Derive an attribution label, link and source name from an image URL."""
    try:
        parts = urlsplit(raw_url)
    except ValueError:
        return None
    host = (parts.hostname or "").lower()
    if not parts.scheme or not host:
        return None

    title = _title_from_path(parts.path)
    base_url = f"{parts.scheme}://{parts.netloc}"
    provider = next((p for p in KNOWN_PROVIDERS if p.match in host), None)
    if provider is not None:
        return InferredAttribution(
            attribution=f"{provider.label}: {title}" if title else provider.label,
            attribution_url=base_url,
            source=provider.source,
        )
    return InferredAttribution(
        attribution=f"Source: {host} ({title})" if title else f"Source: {host}",
        attribution_url=base_url,
        source="url-scan",
    )


def normalize_source_from_url(raw_url: str, current_source: str) -> str:
    current = (current_source or "").strip().lower()
    if current in LEGACY_SOURCES:
        return LEGACY_SOURCES[current]

    inferred = infer_attribution_from_url(raw_url)
    if inferred is not None and current in ("", "manual-url", "url-scan"):
        return inferred.source

    return current_source or ""


def needs_attribution_backfill(attribution: str) -> bool:
    normalized = (attribution or "").strip().lower()
    return not normalized or normalized == "url manual"


def sanitize_item_image(item: ItemState, now: str) -> ItemState:
    url = item.custom_image_url.strip()
    if not url:
        return item

    source = item.image_source
    attribution = item.custom_image_attribution
    attribution_url = item.custom_image_attribution_url
    if _is_http_url(url):
        source = normalize_source_from_url(url, source)
        if needs_attribution_backfill(attribution):
            inferred = infer_attribution_from_url(url)
            if inferred is not None:
                attribution = inferred.attribution
                attribution_url = inferred.attribution_url
                source = inferred.source

    if not attribution.strip():
        # An override without attribution was never completed: back to default imagery
        return item.model_copy(
            update={
                "custom_image_url": "",
                "custom_image_attribution": "",
                "custom_image_attribution_url": "",
                "image_source": "",
                "image_generated_at": "",
                "updated_at": now,
            }
        )

    return item.model_copy(
        update={
            "image_source": source,
            "custom_image_attribution": attribution,
            "custom_image_attribution_url": attribution_url,
        }
    )


def sanitize_category_override(override: CategoryOverride) -> Optional[CategoryOverride]:
    """Return the cleaned override, or None when it must be dropped."""
    url = override.image_url.strip()
    source = override.image_source
    attribution = override.image_attribution
    attribution_url = override.image_attribution_url
    if _is_http_url(url):
        source = normalize_source_from_url(url, source)
        if needs_attribution_backfill(attribution):
            inferred = infer_attribution_from_url(url)
            if inferred is not None:
                attribution = inferred.attribution
                attribution_url = inferred.attribution_url
                source = inferred.source

    if not attribution.strip():
        return None
    return override.model_copy(
        update={
            "image_source": source,
            "image_attribution": attribution,
            "image_attribution_url": attribution_url,
        }
    )


def sanitize_snapshot_images(snapshot: Snapshot, now: str) -> Snapshot:
    """Normalize every custom image override in ``snapshot``; returns a copy."""
    items = {item_id: sanitize_item_image(item, now) for item_id, item in snapshot.items.items()}

    overrides: Dict[str, CategoryOverride] = {}
    for category, override in snapshot.category_overrides.items():
        cleaned = sanitize_category_override(override)
        if cleaned is not None:
            overrides[category] = cleaned

    return snapshot.model_copy(update={"items": items, "category_overrides": overrides}, deep=True)
