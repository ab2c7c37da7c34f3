import json

from mpvremote.lib.file_options import (ensure_file_local_options, read_file_local_options,
                                        store_file_local_options)

YTDL_DEFAULT = "bestvideo[height<=?1080]+bestaudio/best"


def test_ensure_creates_empty_file(tmp_path):
    path = str(tmp_path / "file-local-options.txt")
    ensure_file_local_options(path)
    assert read_file_local_options(path) == {}


def test_ensure_keeps_existing_file(tmp_path):
    path = tmp_path / "file-local-options.txt"
    path.write_text(json.dumps({"a.mkv": {"start": "5"}}))
    ensure_file_local_options(str(path))
    assert read_file_local_options(str(path)) == {"a.mkv": {"start": "5"}}


def test_store_fills_default_ytdl_format(tmp_path):
    path = str(tmp_path / "file-local-options.txt")
    url = "https://example.com/watch?v=abc"

    stored = store_file_local_options(url, {"start": "10"}, YTDL_DEFAULT, path)
    store_file_local_options("b.mkv", {"ytdl-format": "worst"}, YTDL_DEFAULT, path)

    assert stored == {"start": "10", "ytdl-format": YTDL_DEFAULT}
    assert read_file_local_options(path) == {
        url: {"start": "10", "ytdl-format": YTDL_DEFAULT},
        "b.mkv": {"ytdl-format": "worst"},
    }


def test_corrupt_file_reads_as_empty(tmp_path, caplog):
    path = tmp_path / "file-local-options.txt"
    path.write_text("{oops")
    assert read_file_local_options(str(path)) == {}
    assert "corrupt" in caplog.text
