# foodsync/client/local_store.py
# Device-local snapshot persistence

from __future__ import annotations

import json
import os
import re
import tempfile
from typing import Dict, Optional, Protocol

from foodsync.schemas.snapshot import Snapshot


class LocalStore(Protocol):
    """Key-value persistence of one snapshot per profile."""

    def get(self, profile_id: str) -> Optional[Snapshot]: ...

    def put(self, snapshot: Snapshot) -> None: ...

    def delete(self, profile_id: str) -> None: ...


class MemoryLocalStore:
    def __init__(self):
        self._snapshots: Dict[str, Snapshot] = {}

    def get(self, profile_id: str) -> Optional[Snapshot]:
        return self._snapshots.get(profile_id)

    def put(self, snapshot: Snapshot) -> None:
        self._snapshots[snapshot.profile_id] = snapshot

    def delete(self, profile_id: str) -> None:
        self._snapshots.pop(profile_id, None)


_SAFE_NAME = re.compile(r"[^A-Za-z0-9_-]")


class JsonFileLocalStore:
    """One ``<profile_id>.json`` file per profile under ``directory``.

    Writes go to a temp file in the same directory and are moved into place
    with ``os.replace``, so a crash never leaves a half-written snapshot.
    """

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, profile_id: str) -> str:
        return os.path.join(self.directory, f"{_SAFE_NAME.sub('_', profile_id)}.json")

    def get(self, profile_id: str) -> Optional[Snapshot]:
        path = self._path(profile_id)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return Snapshot.from_wire(json.load(f))

    def put(self, snapshot: Snapshot) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot.to_wire(), f, ensure_ascii=False)
            os.replace(tmp_path, self._path(snapshot.profile_id))
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def delete(self, profile_id: str) -> None:
        path = self._path(profile_id)
        if os.path.exists(path):
            os.remove(path)
