#!/usr/bin/env python3
# mpv remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
mpv remote server (mpv-remote)

HTTP remote control for a running mpv.  Talks to mpv over its JSON IPC
socket, serves a JSON API for phone/browser remotes and shows what happens
on mpv's OSD.

  GET  /api/v1/status?exclude=a,b      — player state snapshot (deadline-bounded)
  POST /api/v1/controls/...            — play/pause, stop, seek, volume, ...
  GET  /api/v1/tracks, /api/v1/playlist
  POST /api/v1/tracks/..., /api/v1/playlist/...
  GET  /api/v1/mpvinfo                 — mpv/ffmpeg/libass versions + config
  POST /api/v1/computer/{action}       — shutdown, reboot, quit, display on/off
  ...  /api/v1/favorites, /api/v1/saved-playlists (with --uselocaldb)

Usage:
  mpv --input-ipc-server=/tmp/mpvsocket &
  mpv-remote /tmp/mpvsocket --osd-messages
"""

import argparse
import asyncio
import functools
import logging
import os
import signal
import socket
import sys
from urllib.parse import urlparse

from aiohttp import web

from . import __version__
from .lib.composite import PLAYLIST, TRACK_LIST, fetch_composite, safe_get
from .lib.config import cfg, dump_config, reload_config, script_folder, set_override
from .lib.file_options import ensure_file_local_options, store_file_local_options
from .lib.mpv_ipc import MpvConnectionError, MpvIpc
from .lib.notifications import OBSERVED_PROPERTIES, NotificationTranslator
from .lib.snapshot import SnapshotCache, StatusAggregator
from .lib.store import MediaStore, NotFound
from .lib.system_actions import ACTIONS, SystemActions

log = logging.getLogger(__name__)

API = "/api/v1"
ANNOUNCE_DURATION_MS = 5000

VIDEO_EXTENSIONS = {'.mkv', '.mp4', '.avi', '.webm', '.mov', '.wmv', '.m4v', '.mpg',
                    '.mpeg', '.flv', '.ts', '.m2ts', '.ogv'}
AUDIO_EXTENSIONS = {'.flac', '.mp3', '.wma', '.aac', '.wav', '.m4a', '.ogg', '.opus'}


def is_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


def is_media_file(name: str) -> bool:
    ext = os.path.splitext(name)[1].lower()
    return ext in VIDEO_EXTENSIONS or ext in AUDIO_EXTENSIONS


def local_ip() -> str:
    """Best guess at the LAN address remotes should use."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connect() only picks the outgoing interface
        sock.connect(("10.255.255.255", 1))
        return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        sock.close()


def success(**extra) -> web.Response:
    return web.json_response({"message": "success", **extra})


def error(status: int, message: str) -> web.Response:
    return web.json_response({"message": message}, status=status)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------
@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        resp = web.Response()
    else:
        resp = await handler(request)
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    resp.headers["Access-Control-Expose-Headers"] = "X-Stale-Keys"
    return resp


@web.middleware
async def error_middleware(request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        log.exception("%s %s failed", request.method, request.path)
        return error(500, str(e))


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------
class RemoteServer:
    """aiohttp front end over one mpv connection."""

    def __init__(self, player, *, cache: SnapshotCache | None = None,
                 store: MediaStore | None = None,
                 system_actions: SystemActions | None = None,
                 osd_enabled: bool | None = None,
                 deadline: float | None = None):
        self.player = player
        self.cache = cache if cache is not None else SnapshotCache()
        if deadline is None:
            deadline = float(cfg("player", "status_deadline_ms")) / 1000
        self.aggregator = StatusAggregator(player, self.cache, deadline=deadline)
        if osd_enabled is None:
            osd_enabled = bool(cfg("player", "osd_messages"))
        self.translator = NotificationTranslator(
            player, osd_enabled=osd_enabled,
            queue_size=int(cfg("osd", "queue_size", default=16)),
            cache=self.cache)
        self.store = store
        self.system_actions = system_actions or SystemActions()
        self.port: int | None = None
        self._runner: web.AppRunner | None = None
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls) -> "RemoteServer":
        socket_path = cfg("player", "socket")
        if not socket_path:
            raise MpvConnectionError("No mpv socket configured")
        player = MpvIpc(socket_path, request_timeout=float(cfg("player", "request_timeout")))
        store = None
        if cfg("database", "enabled"):
            store = MediaStore(cfg("database", "path") or os.path.join(script_folder(), "remote.db"))
        return cls(player, store=store)

    @property
    def server_ip(self) -> str:
        return cfg("server", "address") or local_ip()

    def _spawn(self, coro):
        """Run *coro* in the background, keeping a reference until it ends."""
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _db(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    @staticmethod
    async def _json(request: web.Request) -> dict:
        try:
            data = await request.json()
        except Exception:
            return {}
        return data if isinstance(data, dict) else {}

    # ── App ──

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[cors_middleware, error_middleware])
        r = app.router

        r.add_get(f"{API}/status", self.handle_status)
        r.add_get(f"{API}/mpvinfo", self.handle_mpvinfo)
        r.add_post(f"{API}/computer/{{action}}", self.handle_computer)

        # Media controls
        r.add_post(f"{API}/controls/play-pause", self._command_route("cycle", "pause"))
        r.add_post(f"{API}/controls/play", self._property_route("pause", value=False))
        r.add_post(f"{API}/controls/pause", self._property_route("pause", value=True))
        r.add_post(f"{API}/controls/stop", self._command_route("stop"))
        r.add_post(f"{API}/controls/prev", self._command_route("playlist-prev"))
        r.add_post(f"{API}/controls/next", self._command_route("playlist-next"))
        r.add_post(f"{API}/controls/fullscreen", self._command_route("cycle", "fullscreen"))
        r.add_post(f"{API}/controls/volume/{{value}}", self._property_route("volume", "value", float))
        r.add_post(f"{API}/controls/mute", self._command_route("cycle", "mute"))
        r.add_post(f"{API}/controls/seek", self.handle_seek)

        # Tracks
        r.add_get(f"{API}/tracks", self.handle_tracks)
        r.add_post(f"{API}/tracks/audio/reload/{{id}}", self._property_route("aid", "id", int))
        r.add_post(f"{API}/tracks/audio/cycle", self._command_route("cycle", "audio"))
        r.add_post(f"{API}/tracks/audio/add", self._add_track_route("audio-add"))
        r.add_post(f"{API}/tracks/audio/timing/{{seconds}}", self._property_route("audio-delay", "seconds", float))
        r.add_post(f"{API}/tracks/sub/timing/{{seconds}}", self._property_route("sub-delay", "seconds", float))
        r.add_post(f"{API}/tracks/sub/ass-override/{{value}}", self._property_route("sub-ass-override", "value"))
        r.add_post(f"{API}/tracks/sub/font-size/{{size}}", self._property_route("sub-font-size", "size", int))
        r.add_post(f"{API}/tracks/sub/toggle-visibility", self._command_route("cycle", "sub-visibility"))
        r.add_post(f"{API}/tracks/sub/visibility/{{value}}",
                   self._property_route("sub-visibility", "value", lambda v: v.lower() == "true"))
        r.add_post(f"{API}/tracks/sub/add", self._add_track_route("sub-add"))
        r.add_post(f"{API}/tracks/sub/reload/{{id}}", self._property_route("sid", "id", int))

        # Playlist
        r.add_get(f"{API}/playlist", self.handle_playlist)
        r.add_post(f"{API}/playlist", self.handle_playlist_load)
        r.add_post(f"{API}/playlist/prev", self._command_route("playlist-prev"))
        r.add_post(f"{API}/playlist/next", self._command_route("playlist-next"))
        r.add_delete(f"{API}/playlist/remove/{{index}}", self.handle_playlist_remove)
        r.add_post(f"{API}/playlist/move", self.handle_playlist_move)
        r.add_post(f"{API}/playlist/play/{{index}}", self.handle_playlist_play)
        r.add_post(f"{API}/playlist/clear", self._command_route("playlist-clear"))
        r.add_post(f"{API}/playlist/shuffle", self._command_route("playlist-shuffle"))

        # Favorites + saved playlists (local database)
        r.add_post(f"{API}/favorites/toggle", self.handle_favorite_toggle)
        r.add_get(f"{API}/favorites", self.handle_favorites)
        r.add_get(f"{API}/favorites/status/{{filepath:.+}}", self.handle_favorite_status)
        r.add_get(f"{API}/saved-playlists", self.handle_saved_playlists)
        r.add_post(f"{API}/saved-playlists", self.handle_saved_playlist_create)
        r.add_get(f"{API}/saved-playlists/{{id:\\d+}}", self.handle_saved_playlist)
        r.add_delete(f"{API}/saved-playlists/{{id:\\d+}}", self.handle_saved_playlist_delete)
        r.add_post(f"{API}/saved-playlists/{{id:\\d+}}/entries", self.handle_saved_playlist_add_entry)
        r.add_delete(f"{API}/saved-playlists/{{id:\\d+}}/entries/{{entry_id:\\d+}}",
                     self.handle_saved_playlist_remove_entry)
        r.add_post(f"{API}/saved-playlists/{{id:\\d+}}/load", self.handle_saved_playlist_load)
        r.add_put(f"{API}/saved-playlists/{{id:\\d+}}/reorder", self.handle_saved_playlist_reorder)

        return app

    # ── Route factories for one-call endpoints ──

    def _command_route(self, *command):
        async def handler(request: web.Request) -> web.Response:
            await self.player.command(*command)
            return success()
        return handler

    def _property_route(self, name: str, param: str | None = None, convert=str, value=None):
        async def handler(request: web.Request) -> web.Response:
            new_value = value
            if param is not None:
                try:
                    new_value = convert(request.match_info[param])
                except ValueError:
                    return error(400, f"Invalid {param}: {request.match_info[param]}")
            await self.player.set_property(name, new_value)
            return success()
        return handler

    def _add_track_route(self, command: str):
        async def handler(request: web.Request) -> web.Response:
            data = await self._json(request)
            if not data.get("filename"):
                return error(400, "filename is required")
            await self.player.command(command, data["filename"], data.get("flag") or "select")
            return success()
        return handler

    # ── Status ──

    async def handle_status(self, request: web.Request) -> web.Response:
        """GET /api/v1/status — snapshot of every status key minus ?exclude=."""
        exclude = [k.strip() for k in request.query.get("exclude", "").split(",") if k.strip()]
        snap = await self.aggregator.snapshot(exclude=exclude)
        headers = {"X-Stale-Keys": ",".join(sorted(snap.stale))} if snap.stale else None
        return web.json_response(snap.as_dict(), headers=headers)

    async def handle_mpvinfo(self, request: web.Request) -> web.Response:
        """GET /api/v1/mpvinfo — component versions and active config."""
        ffmpeg, mpv, libass = await asyncio.gather(
            safe_get(self.player, "ffmpeg-version"),
            safe_get(self.player, "mpv-version"),
            safe_get(self.player, "libass-version"),
        )
        return web.json_response({
            "ffmpeg-version": ffmpeg,
            "mpv-version": mpv,
            "libass-version": libass,
            "mpvremoteConfig": dump_config(),
            "mpvremoteVersion": __version__,
        })

    async def handle_computer(self, request: web.Request) -> web.Response:
        """POST /api/v1/computer/{action} — shutdown, reboot, quit, display power."""
        action = request.match_info["action"]
        if action not in ACTIONS:
            return error(400, "Invalid action")
        self._spawn(self.system_actions.run(action, self.player))
        return success()

    # ── Controls ──

    async def handle_seek(self, request: web.Request) -> web.Response:
        data = await self._json(request)
        if data.get("target") is None:
            return error(400, "target is required")
        await self.player.command("seek", data["target"], data.get("flag") or "relative")
        return success()

    async def handle_tracks(self, request: web.Request) -> web.Response:
        return web.json_response(await fetch_composite(self.player, TRACK_LIST))

    # ── Playlist ──

    async def handle_playlist(self, request: web.Request) -> web.Response:
        return web.json_response(await fetch_composite(self.player, PLAYLIST))

    async def handle_playlist_load(self, request: web.Request) -> web.Response:
        """POST /api/v1/playlist — load a file, URL or every media file in a folder."""
        data = await self._json(request)
        filename = data.get("filename")
        if not filename:
            return error(400, "filename is required")
        flag = data.get("flag") or "append-play"

        if not is_url(filename) and os.path.isdir(filename):
            names = sorted(n for n in os.listdir(filename) if is_media_file(n))
            for name in names:
                await self.player.command("loadfile", os.path.join(filename, name), "append-play")
            log.info("Queued %d files from %s", len(names), filename)
            return success()

        options = data.get("file-local-options")
        if options:
            await self._db(store_file_local_options, filename, options,
                           cfg("ytdl", "default_format"))
        await self.player.command("loadfile", filename, flag)
        if data.get("seekTo"):
            await self.player.command("seek", data["seekTo"], "absolute")
        return success()

    async def handle_playlist_remove(self, request: web.Request) -> web.Response:
        try:
            index = int(request.match_info["index"])
        except ValueError:
            return error(400, "index must be a number")
        await self.player.command("playlist-remove", index)
        return success()

    async def handle_playlist_move(self, request: web.Request) -> web.Response:
        from_index = request.query.get("fromIndex")
        to_index = request.query.get("toIndex")
        if not from_index:
            return error(400, "fromIndex query param required!")
        if not to_index:
            return error(400, "toIndex query param required!")
        try:
            await self.player.command("playlist-move", int(from_index), int(to_index))
        except ValueError:
            return error(400, "fromIndex and toIndex must be numbers")
        return success()

    async def handle_playlist_play(self, request: web.Request) -> web.Response:
        try:
            index = int(request.match_info["index"])
        except ValueError:
            return error(400, "index must be a number")
        await self.player.command("playlist-play-index", index)
        await self.player.set_property("pause", False)
        return web.json_response(await fetch_composite(self.player, PLAYLIST))

    # ── Favorites ──

    def _store_or_error(self) -> web.Response | None:
        if self.store is None:
            return error(503, "Local database disabled (start with --uselocaldb)")
        return None

    async def handle_favorite_toggle(self, request: web.Request) -> web.Response:
        if (resp := self._store_or_error()) is not None:
            return resp
        data = await self._json(request)
        if not data.get("filepath"):
            return error(400, "filepath is required")
        return web.json_response(await self._db(self.store.toggle_favorite, data["filepath"]))

    async def handle_favorites(self, request: web.Request) -> web.Response:
        if (resp := self._store_or_error()) is not None:
            return resp
        directory = request.query.get("directory") or None
        return web.json_response(await self._db(self.store.get_favorites, directory))

    async def handle_favorite_status(self, request: web.Request) -> web.Response:
        if (resp := self._store_or_error()) is not None:
            return resp
        status = await self._db(self.store.get_media_status, request.match_info["filepath"])
        return web.json_response({"favorited": 1 if status and status["favorited"] else 0})

    # ── Saved playlists ──

    async def handle_saved_playlists(self, request: web.Request) -> web.Response:
        if (resp := self._store_or_error()) is not None:
            return resp
        return web.json_response(await self._db(self.store.get_saved_playlists))

    async def handle_saved_playlist_create(self, request: web.Request) -> web.Response:
        if (resp := self._store_or_error()) is not None:
            return resp
        data = await self._json(request)
        if not data.get("name"):
            return error(400, "name is required")
        playlist = await self._db(self.store.create_saved_playlist, data["name"], data.get("entries"))
        return web.json_response(playlist)

    async def handle_saved_playlist(self, request: web.Request) -> web.Response:
        if (resp := self._store_or_error()) is not None:
            return resp
        playlist = await self._db(self.store.get_saved_playlist, int(request.match_info["id"]))
        if not playlist:
            return error(404, "Playlist not found")
        return web.json_response(playlist)

    async def handle_saved_playlist_delete(self, request: web.Request) -> web.Response:
        if (resp := self._store_or_error()) is not None:
            return resp
        try:
            await self._db(self.store.delete_saved_playlist, int(request.match_info["id"]))
        except NotFound as e:
            return error(404, str(e))
        return success()

    async def handle_saved_playlist_add_entry(self, request: web.Request) -> web.Response:
        if (resp := self._store_or_error()) is not None:
            return resp
        data = await self._json(request)
        if not data.get("filePath"):
            return error(400, "filePath is required")
        try:
            playlist = await self._db(self.store.add_entry_to_saved_playlist,
                                      int(request.match_info["id"]), data["filePath"])
        except NotFound as e:
            return error(404, str(e))
        return web.json_response(playlist)

    async def handle_saved_playlist_remove_entry(self, request: web.Request) -> web.Response:
        if (resp := self._store_or_error()) is not None:
            return resp
        await self._db(self.store.remove_entry_from_saved_playlist,
                       int(request.match_info["entry_id"]))
        return success()

    async def handle_saved_playlist_load(self, request: web.Request) -> web.Response:
        """POST /api/v1/saved-playlists/{id}/load — replace mpv's playlist with it."""
        if (resp := self._store_or_error()) is not None:
            return resp
        playlist = await self._db(self.store.get_saved_playlist, int(request.match_info["id"]))
        if not playlist:
            return error(404, "Playlist not found")
        await self.player.command("playlist-clear")
        for entry in playlist["entries"]:
            await self.player.command("loadfile", entry["file_path"], "append-play")
        return success(loaded=len(playlist["entries"]))

    async def handle_saved_playlist_reorder(self, request: web.Request) -> web.Response:
        if (resp := self._store_or_error()) is not None:
            return resp
        data = await self._json(request)
        entries = data.get("entries")
        if not isinstance(entries, list):
            return error(400, "entries array is required")
        playlist = await self._db(self.store.reorder_saved_playlist,
                                  int(request.match_info["id"]), entries)
        return web.json_response(playlist)

    # ── Lifecycle ──

    async def _bind(self) -> int:
        """Listen on the first free port of the configured range."""
        host = cfg("server", "address")
        first = int(cfg("server", "port"))
        last = int(cfg("server", "port_range_end"))
        for port in range(first, max(first, last) + 1):
            site = web.TCPSite(self._runner, host, port)
            try:
                await site.start()
            except OSError as e:
                log.debug("Port %d unavailable: %s", port, e)
                continue
            return port
        raise RuntimeError(
            f"There is no free port available in {first}-{last}, "
            "mpv-remote not started check your settings.")

    async def start(self):
        """Start HTTP, connect to mpv, start the translator, announce on OSD."""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        self.port = await self._bind()
        log.info("listening on %s:%d", self.server_ip, self.port)

        await self.player.connect()
        # Subscribe first: mpv replies to observe_property with current values
        self.translator.start()
        await self.player.observe(*OBSERVED_PROPERTIES)

        await self._db(ensure_file_local_options)
        if self.store is not None:
            await self._db(self.store.connect)
        self._spawn(self.system_actions.check_wake_support())

        self.translator.show_osd(
            f"Remote access on: {self.server_ip}:{self.port}", ANNOUNCE_DURATION_MS)

    async def run(self):
        """Convenience entry-point: start + wait for signal or mpv exit + stop."""
        try:
            await self.start()
        except BaseException:
            await self.shutdown()
            raise
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        stop_waiter = asyncio.create_task(stop_event.wait())
        try:
            # The event stream ends when mpv closes the socket
            await asyncio.wait({stop_waiter, self.translator.task},
                               return_when=asyncio.FIRST_COMPLETED)
            if not stop_event.is_set():
                log.warning("Lost connection to mpv, shutting down")
        finally:
            stop_waiter.cancel()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            await self.shutdown()

    async def shutdown(self):
        """Clean up resources."""
        await self.translator.stop()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        await self.player.close()
        if self.store is not None:
            self.store.close()
        log.info("mpv remote stopped")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mpv-remote", description="HTTP remote control for mpv")
    parser.add_argument("socket", help="mpv IPC socket (mpv --input-ipc-server=...)")
    parser.add_argument("--address", help="Server address to listen on")
    parser.add_argument("-p", "--webport", type=int, help="First available server port")
    parser.add_argument("-e", "--webportrangeend", type=int, help="Last available server port")
    parser.add_argument("--uselocaldb", action="store_true", default=None,
                        help="Use database for favorites & saved playlists")
    parser.add_argument("--osd-messages", action="store_true", default=None,
                        help="Show notifications on mpv's OSD")
    parser.add_argument("--verbose", action="store_true", default=None, help="Debug logging")
    parser.add_argument("--config", help="Path to config.json")
    return parser.parse_args(argv)


def apply_args(args: argparse.Namespace):
    """Load config and layer the command line on top."""
    reload_config(args.config)
    set_override("player", "socket", args.socket)
    set_override("server", "address", args.address)
    set_override("server", "port", args.webport)
    set_override("server", "port_range_end", args.webportrangeend)
    set_override("database", "enabled", args.uselocaldb)
    set_override("player", "osd_messages", args.osd_messages)
    set_override("player", "verbose", args.verbose)


async def _serve():
    server = RemoteServer.from_config()
    await server.run()


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    apply_args(args)
    try:
        asyncio.run(_serve())
    except (MpvConnectionError, RuntimeError) as e:
        log.error("mpv remote could not start: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
