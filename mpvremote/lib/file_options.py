# mpv remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
File-local options shared with the mpv-side script.

When the remote loads a file with per-file options (e.g. a ytdl format), the
options are stored in a JSON file in the temp directory keyed by filename.
The Lua script inside mpv reads that file on load and applies them.
"""

import json
import logging
import os
import tempfile

log = logging.getLogger(__name__)

FILE_LOCAL_OPTIONS_PATH = os.path.join(
    os.environ.get("TEMP") or os.environ.get("TMP") or tempfile.gettempdir(),
    "file-local-options.txt",
)


def read_file_local_options(path: str = FILE_LOCAL_OPTIONS_PATH) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        log.warning("Ignoring corrupt %s: %s", path, e)
        return {}


def write_file_local_options(options: dict, path: str = FILE_LOCAL_OPTIONS_PATH):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(options, f)


def ensure_file_local_options(path: str = FILE_LOCAL_OPTIONS_PATH):
    """Create an empty options file if none exists yet."""
    if not os.path.exists(path):
        write_file_local_options({}, path)


def store_file_local_options(filename: str, options: dict, default_ytdl_format: str,
                             path: str = FILE_LOCAL_OPTIONS_PATH) -> dict:
    """Record *options* for *filename*, filling in the default ytdl format."""
    options = dict(options)
    if not options.get("ytdl-format"):
        options["ytdl-format"] = default_ytdl_format
    all_options = read_file_local_options(path)
    all_options[filename] = options
    write_file_local_options(all_options, path)
    return options
