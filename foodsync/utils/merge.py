# foodsync/utils/merge.py
# Pure merge of two divergent copies of a profile snapshot.
#
# Policy summary:
#   items      - per entry, field-group last-writer-wins on updatedAt
#   exposures  - union of both sides, oldest 3 kept
#   AI content - picked by descriptionGeneratedAt, independent of updatedAt
#   order      - whole array from the side with the later order stamp
#   settings   - whole object from the side with the later snapshot stamp
#   aux maps   - key union, remote overlays local
# Items are never removed: a missing entry means "not created there yet".

from __future__ import annotations

from typing import Dict, List, Tuple

from foodsync.schemas.snapshot import ItemState, Snapshot, normalize_exposure_events
from foodsync.utils.timestamps import to_timestamp

IMAGE_FIELDS: Tuple[str, ...] = (
    "custom_image_url",
    "custom_image_attribution",
    "custom_image_attribution_url",
    "image_source",
    "image_generated_at",
)

AI_FIELDS: Tuple[str, ...] = (
    "description",
    "reactions",
    "description_generated_at",
    "description_model",
)


def merge_exposure_events(left: List[str], right: List[str]) -> List[str]:
    """Union both event lists, dedupe, sort ascending, keep the oldest three."""
    return normalize_exposure_events([*left, *right])


def merge_item_state(local: ItemState, remote: ItemState) -> ItemState:
    """Field-group LWW merge of one item present on both sides."""
    local_newer = to_timestamp(local.updated_at) >= to_timestamp(remote.updated_at)
    newer, older = (local, remote) if local_newer else (remote, local)

    ai_source = (
        newer
        if to_timestamp(newer.description_generated_at) >= to_timestamp(older.description_generated_at)
        else older
    )

    update = {
        "exposure_events": merge_exposure_events(local.exposure_events, remote.exposure_events),
        "updated_at": newer.updated_at or older.updated_at,
    }
    # A cleared field on the newer side must not wipe a value only the other side has
    for field in IMAGE_FIELDS:
        update[field] = getattr(newer, field) or getattr(older, field)
    for field in AI_FIELDS:
        update[field] = getattr(ai_source, field)

    return newer.model_copy(update=update)


def merge_items(local: Dict[str, ItemState], remote: Dict[str, ItemState]) -> Dict[str, ItemState]:
    merged: Dict[str, ItemState] = {}
    for item_id in dict.fromkeys([*local, *remote]):
        local_item = local.get(item_id)
        remote_item = remote.get(item_id)
        if local_item is None:
            merged[item_id] = remote_item
        elif remote_item is None:
            merged[item_id] = local_item
        else:
            merged[item_id] = merge_item_state(local_item, remote_item)
    return merged


def _merge_category_order(local: Snapshot, remote: Snapshot, local_settings_newer: bool) -> List[str]:
    if not local.category_order and remote.category_order:
        return list(remote.category_order)
    if not remote.category_order and local.category_order:
        return list(local.category_order)
    return list(local.category_order if local_settings_newer else remote.category_order)


def merge_snapshots(local: Snapshot, remote: Snapshot) -> Snapshot:
    """Reconcile ``local`` against ``remote`` without losing either side's data.

    Deterministic and side-effect free: neither input is modified. The
    result carries the remote's identity and revision, since the remote is
    the copy the server last acknowledged.
    """
    local_order_newer = to_timestamp(local.effective_order_updated_at) >= to_timestamp(
        remote.effective_order_updated_at
    )
    order_source = local if local_order_newer else remote

    local_settings_newer = to_timestamp(local.updated_at) >= to_timestamp(remote.updated_at)
    settings_source = local if local_settings_newer else remote

    custom_categories = list(dict.fromkeys([*local.custom_categories, *remote.custom_categories]))

    # The result's effective order stamp must be the order winner's, even when
    # the winner only had the snapshot-level fallback
    order_stamp = order_source.effective_order_updated_at
    meta = order_source.meta
    if meta.order_updated_at != order_stamp and settings_source.updated_at != order_stamp:
        meta = meta.model_copy(update={"order_updated_at": order_stamp})

    return remote.model_copy(
        update={
            "profile_id": remote.profile_id or local.profile_id,
            "profile_name": remote.profile_name or local.profile_name,
            "share_token": remote.share_token or local.share_token,
            "items": merge_items(local.items, remote.items),
            "order": list(order_source.order),
            "settings": settings_source.settings,
            "custom_entities": {**local.custom_entities, **remote.custom_entities},
            "custom_categories": custom_categories,
            "category_order": _merge_category_order(local, remote, local_settings_newer),
            "category_overrides": {**local.category_overrides, **remote.category_overrides},
            "updated_at": settings_source.updated_at,
            "meta": meta,
        },
        deep=True,
    )
