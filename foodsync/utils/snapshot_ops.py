# foodsync/utils/snapshot_ops.py
# Pure edit operations on a Snapshot. Each returns a new Snapshot and stamps
# the timestamps the merge engine relies on.

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from foodsync.schemas.snapshot import (
    MAX_EXPOSURE_EVENTS,
    SNAPSHOT_SCHEMA_VERSION,
    CategoryOverride,
    CustomEntity,
    ItemState,
    Snapshot,
    SnapshotMeta,
    SnapshotSettings,
)


def create_snapshot(
    profile_id: str,
    share_token: str,
    item_ids: Iterable[str],
    now: str,
    profile_name: str = "",
    custom_entities: Optional[Dict[str, CustomEntity]] = None,
    custom_categories: Optional[List[str]] = None,
    category_order: Optional[List[str]] = None,
    category_overrides: Optional[Dict[str, CategoryOverride]] = None,
) -> Snapshot:
    """Seed a fresh snapshot with default state for every item.

    The revision is 0 until the server assigns one on first push.
    """
    ids = list(dict.fromkeys(item_ids))
    return Snapshot(
        schema_version=SNAPSHOT_SCHEMA_VERSION,
        profile_id=profile_id,
        profile_name=profile_name,
        share_token=share_token,
        revision=0,
        updated_at=now,
        settings=SnapshotSettings(),
        items={item_id: ItemState(id=item_id) for item_id in ids},
        order=ids,
        custom_entities=custom_entities or {},
        custom_categories=custom_categories or [],
        category_order=category_order or [],
        category_overrides=category_overrides or {},
        meta=SnapshotMeta(order_updated_at=now),
    )


def _item(snapshot: Snapshot, item_id: str) -> ItemState:
    item = snapshot.items.get(item_id)
    if item is None:
        raise KeyError(f"unknown item: {item_id}")
    return item


def _with_item(snapshot: Snapshot, item: ItemState) -> Snapshot:
    return snapshot.model_copy(update={"items": {**snapshot.items, item.id: item}})


def toggle_exposure(snapshot: Snapshot, item_id: str, index: int, now: str) -> Snapshot:
    """Checkbox semantics for the exposure slots of one item.

    Clicking a filled slot (``index < count``) truncates to ``index`` events;
    clicking the first empty slot (``index == count``) appends ``now``. Any
    other index only refreshes the item stamp.
    """
    item = _item(snapshot, item_id)
    events = list(item.exposure_events)
    count = len(events)
    if index < count:
        events = events[:max(index, 0)]
    elif index == count and count < MAX_EXPOSURE_EVENTS:
        events.append(now)
    return _with_item(snapshot, item.model_copy(update={"exposure_events": events, "updated_at": now}))


def add_item(snapshot: Snapshot, entity: CustomEntity, now: str) -> Snapshot:
    """Register a custom entity and give it a default item state at the end of the order."""
    items = dict(snapshot.items)
    items.setdefault(entity.id, ItemState(id=entity.id, updated_at=now))
    order = snapshot.order if entity.id in snapshot.order else [*snapshot.order, entity.id]
    return snapshot.model_copy(
        update={
            "items": items,
            "order": list(order),
            "custom_entities": {**snapshot.custom_entities, entity.id: entity},
            "meta": snapshot.meta.model_copy(update={"order_updated_at": now}),
        }
    )


def update_item(snapshot: Snapshot, item_id: str, now: str, **fields: Any) -> Snapshot:
    """Set item fields (snake_case names) and stamp ``updatedAt``."""
    item = _item(snapshot, item_id)
    unknown = set(fields) - set(ItemState.model_fields)
    if unknown:
        raise ValueError(f"unknown item fields: {sorted(unknown)}")
    updated = ItemState.model_validate({**item.model_dump(), **fields, "id": item.id, "updated_at": now})
    return _with_item(snapshot, updated)


def set_order(snapshot: Snapshot, order: List[str], now: str) -> Snapshot:
    return snapshot.model_copy(
        update={
            "order": list(dict.fromkeys(order)),
            "meta": snapshot.meta.model_copy(update={"order_updated_at": now}),
        }
    )


def update_settings(snapshot: Snapshot, now: str, **fields: Any) -> Snapshot:
    """Replace settings fields and stamp the snapshot ``updatedAt``."""
    settings = SnapshotSettings.model_validate({**snapshot.settings.model_dump(), **fields})
    return snapshot.model_copy(update={"settings": settings, "updated_at": now})
