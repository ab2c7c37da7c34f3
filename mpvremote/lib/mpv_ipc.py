# mpv remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Asyncio client for mpv's JSON IPC socket (--input-ipc-server).

mpv speaks newline-delimited JSON.  Every request carries a ``request_id``
that mpv echoes in its reply; anything with an ``event`` key is an
asynchronous notification (property changes, seeks, ...).

Usage:
    mpv = MpvIpc("/tmp/mpvsocket")
    await mpv.connect()
    volume = await mpv.get_property("volume")
    await mpv.command("show-text", "Hello", 2000)
    await mpv.observe("pause", "volume")
    async for event in mpv.subscribe():
        print(event.name, event.value)
    await mpv.close()
"""

import asyncio
import itertools
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, AsyncIterator

log = logging.getLogger(__name__)

PROPERTY_UNAVAILABLE = "property unavailable"


class MpvError(Exception):
    """mpv answered a request with an error (or never answered)."""

    def __init__(self, error: str, command=None):
        super().__init__(f"{error} ({command})" if command else error)
        self.error = error
        self.command = command


class PropertyUnavailable(MpvError):
    """The property exists but has no value right now (e.g. no subtitle loaded)."""


class MpvConnectionError(MpvError):
    """The IPC socket could not be reached or was closed."""


@dataclass(frozen=True)
class ChangeEvent:
    """One player-originated change, in the order mpv emitted it."""
    name: str
    value: Any = None


class MpvIpc:
    """JSON IPC connection to one mpv process."""

    def __init__(self, socket_path: str, request_timeout: float = 5.0):
        self.socket_path = socket_path
        self.request_timeout = request_timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task | None = None
        self._pending: dict[int, asyncio.Future] = {}
        self._request_ids = itertools.count(1)
        self._observe_ids = itertools.count(1)
        self._subscribers: set[asyncio.Queue] = set()

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    # ── Connection lifecycle ──

    async def connect(self, retries: int = 50, interval: float = 0.1):
        """Wait for the IPC socket to appear and connect to it."""
        for _ in range(retries):
            if os.path.exists(self.socket_path):
                try:
                    self._reader, self._writer = \
                        await asyncio.open_unix_connection(self.socket_path)
                    break
                except (ConnectionRefusedError, FileNotFoundError):
                    pass
            await asyncio.sleep(interval)
        else:
            raise MpvConnectionError(f"Could not connect to mpv IPC at {self.socket_path}")

        self._reader_task = asyncio.create_task(self._read_loop())
        log.info("Connected to mpv IPC at %s", self.socket_path)

    async def close(self):
        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        await self._close_transport()

    async def _close_transport(self):
        if self._writer:
            try:
                self._writer.close()
                await self._writer.wait_closed()
            except Exception:
                pass
        self._reader = None
        self._writer = None

        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(MpvConnectionError("mpv IPC closed"))
        self._pending.clear()
        for queue in self._subscribers:
            queue.put_nowait(None)

    # ── Requests ──

    async def _request(self, *args):
        if not self.connected:
            raise MpvConnectionError("mpv IPC not connected", list(args))

        request_id = next(self._request_ids)
        fut = asyncio.get_running_loop().create_future()
        self._pending[request_id] = fut
        payload = {"command": list(args), "request_id": request_id}
        try:
            self._writer.write(json.dumps(payload).encode() + b"\n")
            await self._writer.drain()
            return await asyncio.wait_for(fut, self.request_timeout)
        except asyncio.TimeoutError:
            raise MpvError("timeout", list(args)) from None
        except (ConnectionError, OSError) as e:
            raise MpvConnectionError(str(e), list(args)) from e
        finally:
            self._pending.pop(request_id, None)

    async def get_property(self, name: str):
        return await self._request("get_property", name)

    async def set_property(self, name: str, value):
        return await self._request("set_property", name, value)

    async def command(self, name: str, *args):
        return await self._request(name, *args)

    async def observe(self, *names: str):
        """Ask mpv to emit property-change events for *names*."""
        for name in names:
            await self._request("observe_property", next(self._observe_ids), name)

    # ── Incoming traffic ──

    async def _read_loop(self):
        """Background task: routes replies to waiters and events to subscribers."""
        try:
            while self._reader:
                line = await self._reader.readline()
                if not line:
                    break  # EOF, mpv closed
                try:
                    msg = json.loads(line)
                except json.JSONDecodeError:
                    log.debug("Ignoring malformed IPC line: %r", line[:200])
                    continue
                if "event" in msg:
                    for queue in self._subscribers:
                        queue.put_nowait(msg)
                elif "request_id" in msg:
                    self._resolve(msg)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("mpv IPC reader ended: %s", e)

        log.info("mpv IPC connection closed")
        await self._close_transport()

    def _resolve(self, msg: dict):
        fut = self._pending.get(msg.get("request_id"))
        if fut is None or fut.done():
            return
        error = msg.get("error", "success")
        if error == "success":
            fut.set_result(msg.get("data"))
        elif error == PROPERTY_UNAVAILABLE:
            fut.set_exception(PropertyUnavailable(error))
        else:
            fut.set_exception(MpvError(error))

    def subscribe(self) -> AsyncIterator[ChangeEvent]:
        """Change events in arrival order until the connection closes.

        The subscription is registered immediately, so events mpv sends
        before the first iteration (e.g. replies to observe_property) are
        buffered, not lost.  mpv's own ``seek`` event carries no position;
        it is reported on the following ``playback-restart`` as
        ``ChangeEvent("seek", {"end": pos})``.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        return self._events(queue)

    async def _events(self, queue: asyncio.Queue) -> AsyncIterator[ChangeEvent]:
        seeking = False
        try:
            while True:
                msg = await queue.get()
                if msg is None:
                    return
                event = msg.get("event")
                if event == "property-change":
                    yield ChangeEvent(msg.get("name"), msg.get("data"))
                elif event == "seek":
                    seeking = True
                elif event == "playback-restart" and seeking:
                    seeking = False
                    try:
                        end = await self.get_property("time-pos")
                    except MpvError:
                        end = None
                    yield ChangeEvent("seek", {"end": end})
        finally:
            self._subscribers.discard(queue)
