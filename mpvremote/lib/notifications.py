# mpv remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
NotificationTranslator — turns mpv change events into OSD messages.

Events are consumed strictly one at a time, in the order mpv emits them.
Side effects that talk back to the player (delay resets on file change)
are awaited inline; the resulting text goes through OsdDispatcher, a small
bounded queue drained by its own task, so a slow ``show-text`` never holds
up the next event.

When OSD messages are disabled in config the text is still built and
written to the log instead.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass

from .composite import safe_get

log = logging.getLogger(__name__)

OSD_QUEUE_SIZE = 16

# Properties the translator needs mpv to report
OBSERVED_PROPERTIES = ("pause", "volume", "mute", "path", "playlist-count", "playlist-pos")


def format_time(seconds) -> str:
    """Seconds → zero-padded HH:MM:SS (3725 → "01:02:05")."""
    try:
        total = max(int(float(seconds)), 0)
    except (TypeError, ValueError):
        total = 0
    h = total // 3600
    m = (total % 3600) // 60
    s = total % 60
    return f"{h:02d}:{m:02d}:{s:02d}"


def _format_number(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass(frozen=True)
class OSDMessage:
    text: str
    duration_ms: int | None = None
    droppable: bool = True  # may be discarded when the queue is full


class OsdDispatcher:
    """Bounded FIFO between message producers and mpv's show-text command."""

    def __init__(self, player, enabled: bool, max_size: int = OSD_QUEUE_SIZE):
        self.player = player
        self.enabled = enabled
        self.max_size = max_size
        self._queue: deque[OSDMessage] = deque()
        self._ready = asyncio.Event()

    @property
    def pending(self) -> list[OSDMessage]:
        return list(self._queue)

    def submit(self, message: OSDMessage):
        """Queue a message; on overflow drop the oldest droppable one."""
        if len(self._queue) >= self.max_size:
            for queued in self._queue:
                if queued.droppable:
                    self._queue.remove(queued)
                    log.debug("OSD queue full, dropped: %s", queued.text)
                    break
            else:
                if message.droppable:
                    log.debug("OSD queue full, dropped: %s", message.text)
                    return
        self._queue.append(message)
        self._ready.set()

    async def show(self, message: OSDMessage):
        """Display one message now (or log it when OSD is disabled)."""
        if not self.enabled:
            log.info("OSD message: %s", message.text)
            return
        args = [message.text]
        if message.duration_ms:
            args.append(message.duration_ms)
        try:
            await self.player.command("show-text", *args)
        except Exception as e:
            log.warning("show-text failed (%s): %s", message.text, e)

    async def flush(self):
        """Send everything queued so far."""
        while self._queue:
            await self.show(self._queue.popleft())

    async def run(self):
        while True:
            await self._ready.wait()
            await self.flush()
            self._ready.clear()


class NotificationTranslator:
    """Standing listener over the player's change events."""

    def __init__(self, player, osd_enabled: bool = False, queue_size: int = OSD_QUEUE_SIZE,
                 cache=None):
        self.player = player
        self.cache = cache  # SnapshotCache, for values mpv can't report right now
        self.osd = OsdDispatcher(player, osd_enabled, queue_size)
        self._task: asyncio.Task | None = None
        self._osd_task: asyncio.Task | None = None

    # ── Lifecycle ──

    @property
    def task(self) -> asyncio.Task | None:
        """The event loop task; done once the player's event stream ends."""
        return self._task

    def start(self):
        """Subscribe now and consume in the background.

        Call before observing properties: mpv answers observe_property with
        the current value, and those first events must reach us.
        """
        events = self.player.subscribe()
        self._osd_task = asyncio.create_task(self.osd.run())
        self._task = asyncio.create_task(self.run(events))

    async def stop(self):
        for task in (self._task, self._osd_task):
            if task:
                task.cancel()
                try:
                    await task
                except (asyncio.CancelledError, Exception):
                    pass
        self._task = None
        self._osd_task = None

    async def run(self, events=None):
        """Consume events until the stream ends (or the task is cancelled)."""
        if events is None:
            events = self.player.subscribe()
        async for event in events:
            try:
                await self.handle_event(event)
            except Exception:
                log.exception("Error handling %s event", event.name)
        log.warning("Player event stream ended")

    # ── Messages ──

    def emit(self, text: str, duration_ms: int | None = None, droppable: bool = True):
        self.osd.submit(OSDMessage(text, duration_ms, droppable))

    def show_osd(self, text: str, duration_ms: int | None = None):
        """Queue a message that must not be dropped (announcements)."""
        self.emit(text, duration_ms, droppable=False)

    # ── Event handling ──

    async def handle_event(self, event):
        name, value = event.name, event.value

        if name == "pause":
            self.emit("Pause" if value else "Play")
        elif name == "volume":
            self.emit(f"Volume: {_format_number(value)}%")
        elif name == "mute":
            if value:
                self.emit("Mute")
            else:
                volume = await safe_get(self.player, "volume")
                if volume is None and self.cache is not None:
                    volume = self.cache.get("volume")
                if volume is None:
                    log.debug("Unmuted, volume unknown")
                else:
                    self.emit(f"Volume {_format_number(volume)}")
        elif name == "seek":
            end = value.get("end") if isinstance(value, dict) else value
            self.emit(f"Seek: {format_time(end)}")
        elif name == "path":
            if value:
                await self._on_file_loaded(value)
        # playlist-count / playlist-pos fire constantly and are not user-facing

    async def _on_file_loaded(self, path: str):
        # New file: timing offsets from the previous one don't apply
        await self.player.set_property("sub-delay", 0)
        await self.player.set_property("audio-delay", 0)
        title = (await safe_get(self.player, "media-title")
                 or await safe_get(self.player, "filename")
                 or path)
        self.emit(f"Playing: {title}", droppable=False)
