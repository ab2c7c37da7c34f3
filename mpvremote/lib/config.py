# mpv remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Shared configuration loader for the mpv remote service.

Loads a single JSON config file.  Search order:
  1. $MPVREMOTE_CONFIG (or the path given with --config)
  2. config.json                              (CWD — handy for local dev)
  3. $MPV_HOME/scripts/mpvremote/config.json  (next to the mpv-side script)

Command line flags are layered on top with set_override(), so a value given
on the command line always wins over the file.

Usage:
    from .config import cfg

    socket_path = cfg("player", "socket")
    osd_enabled = cfg("player", "osd_messages", default=False)
    first_port  = cfg("server", "port", default=8000)
"""

import copy
import json
import logging
import os
import platform

logger = logging.getLogger(__name__)

_config: dict | None = None
_overrides: dict[str, dict] = {}
_explicit_path: str | None = None

DEFAULTS = {
    "server": {
        "address": None,
        "port": 8000,
        "port_range_end": 8005,
    },
    "player": {
        "socket": None,
        "osd_messages": False,
        "status_deadline_ms": 500,
        "request_timeout": 5.0,
        "verbose": False,
    },
    "osd": {
        "queue_size": 16,
    },
    "database": {
        "enabled": False,
        "path": None,
    },
    "ytdl": {
        "default_format": "bestvideo[height<=?1080]+bestaudio/best",
    },
}


def mpv_home() -> str:
    """Return mpv's config directory, honouring MPV_HOME and XDG_CONFIG_HOME."""
    home = os.environ.get("MPV_HOME")
    if home:
        return home
    if platform.system() == "Windows":
        return os.path.join(os.path.expanduser("~"), "AppData", "Roaming", "mpv")
    xdg = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(xdg, "mpv")


def script_folder() -> str:
    """Folder holding the mpv-side script and its data (database, config)."""
    return os.path.join(mpv_home(), "scripts", "mpvremote")


def _search_paths() -> list[str]:
    paths = []
    explicit = _explicit_path or os.environ.get("MPVREMOTE_CONFIG")
    if explicit:
        paths.append(explicit)
    paths.append("config.json")
    paths.append(os.path.join(script_folder(), "config.json"))
    return paths


def _validate(config: dict, path: str) -> None:
    """Warn about suspicious config values."""
    server = config.get("server") or {}
    port = server.get("port", DEFAULTS["server"]["port"])
    end = server.get("port_range_end", DEFAULTS["server"]["port_range_end"])
    if isinstance(port, int) and isinstance(end, int) and end < port:
        logger.warning("Config %s: server.port_range_end (%d) is below server.port (%d)",
                       path, end, port)
    player = config.get("player") or {}
    deadline = player.get("status_deadline_ms")
    if deadline is not None and (not isinstance(deadline, (int, float)) or deadline <= 0):
        logger.warning("Config %s: invalid player.status_deadline_ms %r — using default",
                       path, deadline)
        player.pop("status_deadline_ms")


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.info("No config.json found — using defaults")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    Lookup order is override → config file → built-in default → *default*.

    cfg("player")                          → the merged player section
    cfg("player", "socket")                → "/tmp/mpvsocket"
    cfg("server", "port", default=8000)    → 8000 when unset everywhere
    """
    config = load_config()
    if key is None:
        merged = copy.deepcopy(DEFAULTS.get(section) or {})
        val = config.get(section)
        if isinstance(val, dict):
            merged.update(val)
        elif val is not None:
            return val
        merged.update(_overrides.get(section, {}))
        return merged if merged else default

    if key in _overrides.get(section, {}):
        return _overrides[section][key]
    val = config.get(section)
    if isinstance(val, dict) and val.get(key) is not None:
        return val[key]
    builtin = (DEFAULTS.get(section) or {}).get(key)
    return builtin if builtin is not None else default


def set_override(section: str, key: str, value) -> None:
    """Layer a value over the config file (used for command line flags)."""
    if value is None:
        return
    _overrides.setdefault(section, {})[key] = value


def dump_config() -> dict:
    """Return every section as the service sees it (for /mpvinfo)."""
    sections = set(DEFAULTS) | set(load_config()) | set(_overrides)
    return {section: cfg(section) for section in sorted(sections)}


def reload_config(path: str | None = None):
    """Force re-read from disk (for testing or hot-reload).

    Overrides are dropped too; *path* pins the file to read first.
    """
    global _config, _explicit_path
    _config = None
    _overrides.clear()
    _explicit_path = path
    return load_config()
