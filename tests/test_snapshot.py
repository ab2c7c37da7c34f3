import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import FakePlayer, playlist_properties
from mpvremote.lib.mpv_ipc import MpvError
from mpvremote.lib.snapshot import STATUS_DEFAULTS, Snapshot, SnapshotCache, StatusAggregator


def make_aggregator(player, deadline=0.5):
    return StatusAggregator(player, SnapshotCache(), deadline=deadline)


def test_nothing_playing_gives_defaults():
    agg = make_aggregator(FakePlayer())
    snap = asyncio.run(agg.snapshot())
    assert list(snap) == list(STATUS_DEFAULTS)
    assert snap.as_dict() == STATUS_DEFAULTS
    assert snap.stale == frozenset()


def test_exclude_removes_keys():
    agg = make_aggregator(FakePlayer())
    snap = asyncio.run(agg.snapshot(exclude={"playlist", "track-list", "bogus"}))
    assert set(snap) == set(STATUS_DEFAULTS) - {"playlist", "track-list"}


def test_exclude_everything_is_empty():
    agg = make_aggregator(FakePlayer())
    snap = asyncio.run(agg.snapshot(exclude=STATUS_DEFAULTS))
    assert len(snap) == 0


def test_fresh_values_update_cache():
    player = FakePlayer({"volume": 65, "pause": True, "time-pos": 12.5,
                         "time-remaining": 80.0, "media-title": "Song"})
    agg = make_aggregator(player)
    snap = asyncio.run(agg.snapshot())

    assert snap["volume"] == 65
    assert snap["pause"] is True
    assert snap["position"] == 12.5
    assert snap["remaining"] == 80.0
    assert snap["media-title"] == "Song"
    assert agg.cache.get("volume") == 65
    assert agg.cache.get("position") == 12.5


def test_late_fetch_uses_cached_value():
    player = FakePlayer({"volume": 80, "pause": True}, delays={"volume": 1.0})
    agg = make_aggregator(player, deadline=0.05)
    agg.cache.put("volume", 42)

    snap = asyncio.run(agg.snapshot(keys=["volume", "pause"]))

    assert snap["volume"] == 42
    assert snap["pause"] is True
    assert snap.stale == {"volume"}


def test_late_fetch_without_cache_uses_default():
    player = FakePlayer({"sub-font-size": 40}, delays={"sub-font-size": 1.0})
    agg = make_aggregator(player, deadline=0.05)

    snap = asyncio.run(agg.snapshot(keys=["sub-font-size"]))

    assert snap["sub-font-size"] == 55
    assert "sub-font-size" in snap.stale


def test_late_fetch_refreshes_cache_in_background():
    player = FakePlayer({"volume": 70}, delays={"volume": 0.1})
    agg = make_aggregator(player, deadline=0.01)

    async def scenario():
        first = await agg.snapshot(keys=["volume"])
        await asyncio.sleep(0.3)
        second = await agg.snapshot(keys=["volume"], deadline=0.01)
        return first, second

    first, second = asyncio.run(scenario())
    assert first["volume"] == 0
    assert agg.cache.get("volume") == 70
    # the second read is slow again, but the cache now holds the late result
    assert second["volume"] == 70


def test_concurrent_snapshots_share_inflight_read():
    player = FakePlayer({"volume": 33}, delays={"volume": 0.05})
    agg = make_aggregator(player)

    async def scenario():
        return await asyncio.gather(agg.snapshot(keys=["volume"]),
                                    agg.snapshot(keys=["volume"]))

    a, b = asyncio.run(scenario())
    assert a["volume"] == b["volume"] == 33
    assert player.gets("volume") == 1


def test_failed_read_is_absent_and_isolated():
    player = FakePlayer({"pause": True, "volume": 50},
                        failures={"volume": MpvError("timeout")})
    agg = make_aggregator(player)
    snap = asyncio.run(agg.snapshot(keys=["pause", "volume"]))
    assert snap["volume"] == 0
    assert snap["pause"] is True
    assert snap.stale == frozenset()


def test_falsy_values_are_kept():
    player = FakePlayer({"volume": 0, "speed": 0.5, "sub-visibility": False})
    agg = make_aggregator(player)
    snap = asyncio.run(agg.snapshot(keys=["volume", "speed", "sub-visibility"]))
    assert snap["sub-visibility"] is False
    assert snap["speed"] == 0.5


def test_composite_keys():
    props = playlist_properties("/music/a.flac", "/music/b.flac")
    props.update({"metadata/list/count": 1,
                  "metadata/list/0/key": "artist",
                  "metadata/list/0/value": "Someone"})
    agg = make_aggregator(FakePlayer(props))
    snap = asyncio.run(agg.snapshot(keys=["playlist", "metadata"]))
    assert [item["filename"] for item in snap["playlist"]] == ["a.flac", "b.flac"]
    assert snap["metadata"] == {"artist": "Someone"}


def test_defaults_are_not_shared_between_snapshots():
    agg = make_aggregator(FakePlayer(), deadline=0.0)
    snap = asyncio.run(agg.snapshot(keys=["playlist"]))
    snap["playlist"].append("junk")
    assert STATUS_DEFAULTS["playlist"] == []


def test_snapshot_is_read_only():
    snap = Snapshot({"volume": 1}, stale=["volume"])
    with pytest.raises(TypeError):
        snap["volume"] = 2
    assert snap.stale == {"volume"}
    assert "volume" in repr(snap)


def test_cache_concurrent_writers_keep_every_key():
    cache = SnapshotCache()

    def write(key):
        for i in range(500):
            cache.put(key, i)

    with ThreadPoolExecutor(max_workers=2) as pool:
        list(pool.map(write, ["volume", "pause"]))

    assert cache.get("volume") == 499
    assert cache.get("pause") == 499
    assert len(cache) == 2


def test_cache_versions_increase():
    cache = SnapshotCache()
    first = cache.put("volume", 1)
    second = cache.put("volume", 2)
    assert second.version > first.version
    assert cache.entry("volume") is second
    assert cache.age("volume") >= 0
    assert cache.age("missing") is None
    assert "missing" not in cache


def test_late_failure_keeps_cached_value():
    player = FakePlayer(delays={"volume": 0.1}, failures={"volume": MpvError("timeout")})
    agg = make_aggregator(player, deadline=0.05)
    agg.cache.put("volume", 65)

    async def scenario():
        first = await agg.snapshot(keys=["volume"])
        await asyncio.sleep(0.2)
        second = await agg.snapshot(keys=["volume"])
        await asyncio.sleep(0.2)
        return first, second

    first, second = asyncio.run(scenario())
    assert first["volume"] == second["volume"] == 65
    assert agg.cache.get("volume") == 65


def test_absent_value_is_not_cached():
    agg = make_aggregator(FakePlayer())
    snap = asyncio.run(agg.snapshot(keys=["media-title", "volume"]))
    assert snap["media-title"] is None
    assert "media-title" not in agg.cache
    assert "volume" not in agg.cache
