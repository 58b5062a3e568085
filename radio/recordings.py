"""Radio Program Pipeline - Recording discovery.

Qualifying recording filenames per variant:

    kids:   kids-world_{world}-lmid_{owner}-question_{n}-tm_{ts}.(webm|mp3)
    parent: parent_{id}-world_{world}-lmid_{owner}-question_{n}-tm_{ts}.(webm|mp3)

The pipeline itself never lists recordings; the listing only feeds the
regeneration decision.
"""

from __future__ import annotations

import re
from typing import Protocol

from radio.segments import GenerationKey
from radio.storage import ObjectStore
from radio.utils.paths import filename_from_url


def recording_pattern(key: GenerationKey) -> re.Pattern[str]:
    """Filename pattern of qualifying recordings for key's variant."""
    world = re.escape(key.world)
    owner = re.escape(key.owner_id)
    tail = rf"-world_{world}-lmid_{owner}-question_\d+-tm_\d+\.(webm|mp3)$"
    if key.variant == "kids":
        return re.compile(rf"^kids{tail}")
    if key.variant == "parent":
        return re.compile(rf"^parent_[^-]+{tail}")
    return re.compile(rf"^{re.escape(key.variant)}[^-]*{tail}")


def qualifying_filenames(key: GenerationKey, names: list[str]) -> list[str]:
    """Unique qualifying filenames, sorted."""
    pattern = recording_pattern(key)
    return sorted({name for name in names if pattern.match(name)})


def contributing_recordings(key: GenerationKey, urls: list[str]) -> list[str]:
    """Unique qualifying recording filenames behind urls (query strings stripped).

    Names that do not match the variant pattern are left out, so the count
    stays comparable with what a RecordingLister returns for key.
    """
    return qualifying_filenames(key, [filename_from_url(url) for url in urls if url])


class RecordingLister(Protocol):
    def list_recordings(self, key: GenerationKey) -> list[str]: ...


class StoreRecordingLister:
    """Lists recordings from the key's storage directory."""

    def __init__(self, store: ObjectStore):
        self._store = store

    def list_recordings(self, key: GenerationKey) -> list[str]:
        return qualifying_filenames(key, self._store.list(key.storage_prefix))
