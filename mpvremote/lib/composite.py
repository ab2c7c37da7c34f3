# mpv remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Composite property reads: "read a count, then read sub-fields per index".

mpv exposes lists (playlist, track-list, chapter-list, metadata) as a
``.../count`` property plus ``prefix/N/field`` sub-properties.  One routine,
fetch_composite(), walks any of them given a CompositeSpec.  Every sub-field
is read independently, so a missing field only blanks that field.
"""

import asyncio
import logging
import ntpath
import posixpath
from dataclasses import dataclass, field
from typing import Callable

from .mpv_ipc import PropertyUnavailable

log = logging.getLogger(__name__)


async def safe_get(player, name: str):
    """Read one property; any failure resolves to None (absent).

    "property unavailable" is expected (no subtitle loaded, nothing playing)
    and is not logged.  Everything else is logged and treated the same.
    """
    try:
        return await player.get_property(name)
    except PropertyUnavailable:
        return None
    except Exception as e:
        log.warning("Reading %s failed: %s", name, e)
        return None


@dataclass(frozen=True)
class CompositeSpec:
    count: str                                   # property holding the item count
    prefix: str                                  # items live at prefix/N/field
    fields: tuple[str, ...]
    rename: dict = field(default_factory=dict)   # mpv field -> output key
    discriminator: str | None = None             # field selecting extra_fields
    extra_fields: dict = field(default_factory=dict)
    with_index: bool = False
    finish: Callable | None = None               # post-process the item list


def _basename(path: str) -> str:
    if "\\" in path and "/" not in path:
        return ntpath.basename(path)
    return posixpath.basename(path)


def _finish_playlist(items: list[dict]) -> list[dict]:
    for item in items:
        if item.get("filePath"):
            item["filename"] = _basename(item["filePath"])
    return items


def _finish_metadata(items: list[dict]) -> dict:
    metadata = {}
    for item in items:
        if item.get("key") and item.get("value"):
            metadata[item["key"]] = item["value"]
    return metadata


PLAYLIST = CompositeSpec(
    count="playlist-count",
    prefix="playlist",
    fields=("id", "filename", "current", "title"),
    rename={"filename": "filePath"},
    with_index=True,
    finish=_finish_playlist,
)

TRACK_LIST = CompositeSpec(
    count="track-list/count",
    prefix="track-list",
    fields=("id", "type", "selected", "codec"),
    discriminator="type",
    extra_fields={
        "video": ("demux-w", "demux-h"),
        "audio": ("demux-channel-count", "demux-channels", "demux-samplerate",
                  "demux-bitrate", "lang", "external-filename"),
        "sub": ("lang", "external-filename"),
    },
    with_index=True,
)

CHAPTER_LIST = CompositeSpec(
    count="chapter-list/count",
    prefix="chapter-list",
    fields=("title", "time"),
)

METADATA = CompositeSpec(
    count="metadata/list/count",
    prefix="metadata/list",
    fields=("key", "value"),
    finish=_finish_metadata,
)


async def _read_fields(player, spec: CompositeSpec, index: int, names) -> dict:
    values = await asyncio.gather(
        *(safe_get(player, f"{spec.prefix}/{index}/{name}") for name in names))
    return {spec.rename.get(name, name): value for name, value in zip(names, values)}


async def _fetch_item(player, spec: CompositeSpec, index: int) -> dict:
    item = {"index": index} if spec.with_index else {}
    item.update(await _read_fields(player, spec, index, spec.fields))

    if spec.discriminator:
        extra = spec.extra_fields.get(item.get(spec.discriminator), ())
        if extra:
            item.update(await _read_fields(player, spec, index, extra))
    return item


async def fetch_composite(player, spec: CompositeSpec):
    """Read every item of a composite property, all items concurrently."""
    count = await safe_get(player, spec.count)
    try:
        count = int(count or 0)
    except (TypeError, ValueError):
        log.warning("Unexpected %s value: %r", spec.count, count)
        count = 0

    items = list(await asyncio.gather(
        *(_fetch_item(player, spec, i) for i in range(count))))
    if spec.finish:
        return spec.finish(items)
    return items
