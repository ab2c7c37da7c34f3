"""
mpv remote — HTTP remote control for a running mpv.

The server (server.py) talks to mpv over its JSON IPC socket and serves a
JSON API to phone/browser remotes.  The pieces it is built from live in lib/:

  mpv_ipc.py         — asyncio client for mpv's --input-ipc-server socket
  snapshot.py        — deadline-bounded status snapshots with a per-key cache
  composite.py       — playlist / track-list / chapter-list / metadata reads
  notifications.py   — mpv change events → OSD messages
  system_actions.py  — shutdown, reboot, display power
  store.py           — SQLite favorites and saved playlists
  file_options.py    — per-file options handed to the mpv-side script
  config.py          — JSON config loader
"""

__version__ = "1.0.0"
