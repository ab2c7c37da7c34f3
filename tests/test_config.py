import json
import os

from mpvremote.lib import config


def write_config(path, data):
    path.write_text(json.dumps(data))
    return str(path)


def test_defaults_without_file():
    assert config.cfg("server", "port") == 8000
    assert config.cfg("player", "status_deadline_ms") == 500
    assert config.cfg("player", "missing", default="x") == "x"
    assert config.cfg("database") == {"enabled": False, "path": None}


def test_file_in_working_directory(tmp_path):
    write_config(tmp_path / "config.json", {"server": {"port": 9100}})
    config.reload_config()
    assert config.cfg("server", "port") == 9100
    assert config.cfg("server", "port_range_end") == 8005


def test_file_next_to_mpv_script(tmp_path):
    folder = tmp_path / "mpv" / "scripts" / "mpvremote"
    folder.mkdir(parents=True)
    write_config(folder / "config.json", {"osd": {"queue_size": 4}})
    config.reload_config()
    assert config.script_folder() == str(folder)
    assert config.cfg("osd", "queue_size") == 4


def test_environment_path_wins(tmp_path, monkeypatch):
    write_config(tmp_path / "config.json", {"server": {"port": 9100}})
    custom = write_config(tmp_path / "custom.json", {"server": {"port": 9200}})
    monkeypatch.setenv("MPVREMOTE_CONFIG", custom)
    config.reload_config()
    assert config.cfg("server", "port") == 9200


def test_invalid_json_is_skipped(tmp_path, caplog):
    (tmp_path / "config.json").write_text("{not json")
    config.reload_config()
    assert config.cfg("server", "port") == 8000
    assert "Invalid JSON" in caplog.text


def test_bad_deadline_falls_back(tmp_path, caplog):
    write_config(tmp_path / "config.json", {"player": {"status_deadline_ms": -1}})
    config.reload_config()
    assert config.cfg("player", "status_deadline_ms") == 500
    assert "status_deadline_ms" in caplog.text


def test_overrides_layer_on_top(tmp_path):
    write_config(tmp_path / "config.json", {"player": {"osd_messages": False}})
    config.reload_config()
    config.set_override("player", "osd_messages", True)
    config.set_override("server", "address", None)

    assert config.cfg("player", "osd_messages") is True
    assert config.cfg("player")["osd_messages"] is True
    assert config.cfg("server", "address") is None

    config.reload_config()
    assert config.cfg("player", "osd_messages") is False


def test_dump_config_has_every_section():
    config.set_override("player", "socket", "/tmp/mpvsocket")
    dumped = config.dump_config()
    assert set(config.DEFAULTS) <= set(dumped)
    assert dumped["player"]["socket"] == "/tmp/mpvsocket"


def test_mpv_home(monkeypatch):
    monkeypatch.delenv("MPV_HOME")
    monkeypatch.setenv("XDG_CONFIG_HOME", "/xdg")
    monkeypatch.setattr(config.platform, "system", lambda: "Linux")
    assert config.mpv_home() == os.path.join("/xdg", "mpv")
