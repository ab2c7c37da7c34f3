# mpv remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
SQLite persistence for favorites, per-file media status and saved playlists.

Blocking (sqlite3); the server calls it through run_in_executor.  Rows are
returned as plain dicts so they serialise straight to JSON.
"""

import logging
import os
import sqlite3
import threading
from pathlib import Path

log = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS mediastatus(
    id INTEGER PRIMARY KEY ASC,
    directory TEXT,
    file_name TEXT NOT NULL,
    "current_time" REAL,
    finished INTEGER,
    favorited INTEGER DEFAULT 0
);
CREATE TABLE IF NOT EXISTS saved_playlist(
    id INTEGER PRIMARY KEY ASC,
    name TEXT NOT NULL,
    created_date DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS saved_playlist_entry(
    id INTEGER PRIMARY KEY ASC,
    playlist_id INTEGER NOT NULL,
    file_path TEXT NOT NULL,
    position INTEGER NOT NULL,
    CONSTRAINT fk_saved_playlist
        FOREIGN KEY (playlist_id)
        REFERENCES saved_playlist(id)
        ON DELETE CASCADE
);
"""


class NotFound(Exception):
    """The requested row does not exist."""


def split_path(filepath: str) -> tuple[str, str]:
    """'/a/b/c.mkv' → ('/a/b', 'c.mkv'); a trailing separator is ignored."""
    filepath = filepath.rstrip(os.sep) or filepath
    directory, _, file_name = filepath.rpartition(os.sep)
    return directory, file_name


class MediaStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

    def connect(self):
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.executescript(SCHEMA)
        self._migrate(conn)
        conn.commit()
        self._conn = conn
        log.info("Media database ready at %s", self.db_path)

    def _migrate(self, conn: sqlite3.Connection):
        # Databases created before favorites existed lack the column
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(mediastatus)")}
        if "favorited" not in columns:
            conn.execute("ALTER TABLE mediastatus ADD COLUMN favorited INTEGER DEFAULT 0")
            log.info("Added favorited column to mediastatus table")

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def _all(self, sql: str, params=()) -> list[dict]:
        with self._lock:
            return [dict(row) for row in self._conn.execute(sql, params).fetchall()]

    def _one(self, sql: str, params=()) -> dict | None:
        with self._lock:
            row = self._conn.execute(sql, params).fetchone()
        return dict(row) if row else None

    def _write(self, sql: str, params=()) -> int:
        with self._lock:
            cur = self._conn.execute(sql, params)
            self._conn.commit()
            return cur.lastrowid

    # ── Media status / favorites ──

    def get_media_status(self, filepath: str) -> dict | None:
        directory, file_name = split_path(filepath)
        return self._one(
            "SELECT * FROM mediastatus WHERE directory=? AND file_name=?",
            (directory, file_name))

    def toggle_favorite(self, filepath: str) -> dict:
        directory, file_name = split_path(filepath)
        entry = self.get_media_status(filepath)
        if entry:
            favorited = 0 if entry["favorited"] else 1
            self._write(
                "UPDATE mediastatus SET favorited=? WHERE directory=? AND file_name=?",
                (favorited, directory, file_name))
        else:
            favorited = 1
            self._write(
                'INSERT INTO mediastatus ("current_time", finished, directory, file_name, favorited) '
                "VALUES (?, ?, ?, ?, ?)",
                (0, 0, directory, file_name, favorited))
        return {"favorited": favorited}

    def get_favorites(self, directory: str | None = None) -> list[dict]:
        """Favorites in *directory* and its subdirectories (all when None)."""
        if directory:
            directory = directory.rstrip(os.sep) or directory
            return self._all(
                "SELECT * FROM mediastatus WHERE (directory=? OR directory LIKE ?) AND favorited=1 "
                "ORDER BY directory, file_name",
                (directory, directory + os.sep + "%"))
        return self._all(
            "SELECT * FROM mediastatus WHERE favorited=1 ORDER BY directory, file_name")

    # ── Saved playlists ──

    def create_saved_playlist(self, name: str, entries: list[str] | None = None) -> dict:
        with self._lock:
            cur = self._conn.execute("INSERT INTO saved_playlist (name) VALUES (?)", (name,))
            playlist_id = cur.lastrowid
            self._conn.executemany(
                "INSERT INTO saved_playlist_entry (playlist_id, file_path, position) VALUES (?, ?, ?)",
                [(playlist_id, path, i) for i, path in enumerate(entries or [])])
            self._conn.commit()
        return self.get_saved_playlist(playlist_id)

    def get_saved_playlists(self) -> list[dict]:
        return self._all("SELECT * FROM saved_playlist ORDER BY created_date DESC, id DESC")

    def get_saved_playlist(self, playlist_id: int) -> dict | None:
        playlist = self._one("SELECT * FROM saved_playlist WHERE id=?", (playlist_id,))
        if playlist:
            playlist["entries"] = self._all(
                "SELECT * FROM saved_playlist_entry WHERE playlist_id=? ORDER BY position",
                (playlist_id,))
        return playlist

    def delete_saved_playlist(self, playlist_id: int):
        if not self.get_saved_playlist(playlist_id):
            raise NotFound("Saved playlist not exists.")
        self._write("DELETE FROM saved_playlist WHERE id=?", (playlist_id,))

    def add_entry_to_saved_playlist(self, playlist_id: int, file_path: str) -> dict:
        if not self.get_saved_playlist(playlist_id):
            raise NotFound("Saved playlist not exists.")
        row = self._one(
            "SELECT MAX(position) AS max FROM saved_playlist_entry WHERE playlist_id=?",
            (playlist_id,))
        position = row["max"] + 1 if row and row["max"] is not None else 0
        self._write(
            "INSERT INTO saved_playlist_entry (playlist_id, file_path, position) VALUES (?, ?, ?)",
            (playlist_id, file_path, position))
        return self.get_saved_playlist(playlist_id)

    def remove_entry_from_saved_playlist(self, entry_id: int):
        self._write("DELETE FROM saved_playlist_entry WHERE id=?", (entry_id,))

    def reorder_saved_playlist(self, playlist_id: int, entries: list[dict]) -> dict | None:
        """Renumber positions to follow the order of *entries* ([{"id": ...}, ...])."""
        with self._lock:
            self._conn.executemany(
                "UPDATE saved_playlist_entry SET position=? WHERE id=? AND playlist_id=?",
                [(i, entry["id"], playlist_id) for i, entry in enumerate(entries)])
            self._conn.commit()
        return self.get_saved_playlist(playlist_id)
