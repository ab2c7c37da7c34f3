import asyncio
import json

import pytest

from mpvremote.lib import config
from mpvremote.lib.mpv_ipc import PropertyUnavailable


class FakePlayer:
    """In-memory stand-in for MpvIpc.

    properties  name → value (missing names raise PropertyUnavailable)
    delays      name → seconds to sleep before answering get_property
    failures    name → exception raised by get_property / set_property
    command_failures  command name → exception raised by command()
    events      ChangeEvents yielded, in order, by subscribe()
    """

    def __init__(self, properties=None, delays=None, failures=None,
                 command_failures=None, events=None):
        self.properties = dict(properties or {})
        self.delays = dict(delays or {})
        self.failures = dict(failures or {})
        self.command_failures = dict(command_failures or {})
        self.events = list(events or [])
        self.calls = []
        self.observed = []
        self.order = []  # "subscribe" / "observe", as they happened
        self.connected = False

    async def get_property(self, name):
        self.calls.append(("get", name))
        if self.delays.get(name):
            await asyncio.sleep(self.delays[name])
        if name in self.failures:
            raise self.failures[name]
        if name not in self.properties:
            raise PropertyUnavailable("property unavailable")
        return self.properties[name]

    async def set_property(self, name, value):
        self.calls.append(("set", name, value))
        if name in self.failures:
            raise self.failures[name]
        self.properties[name] = value

    async def command(self, name, *args):
        self.calls.append(("command", name, *args))
        if name in self.command_failures:
            raise self.command_failures[name]

    def subscribe(self):
        self.order.append("subscribe")
        return self._events()

    async def _events(self):
        for event in self.events:
            yield event

    async def connect(self):
        self.connected = True

    async def observe(self, *names):
        self.order.append("observe")
        self.observed.extend(names)

    async def close(self):
        self.connected = False

    def gets(self, name):
        return sum(1 for call in self.calls if call == ("get", name))

    def commands(self, name=None):
        return [c[1:] for c in self.calls
                if c[0] == "command" and (name is None or c[1] == name)]


class FakeSystemActions:
    def __init__(self):
        self.runs = []
        self.wake_checked = False

    async def run(self, action, player=None):
        self.runs.append(action)
        return True

    async def check_wake_support(self):
        self.wake_checked = True


class FakeMpv:
    """Minimal mpv JSON IPC endpoint on a unix socket.

    observe_values  name → value sent as a property-change event right after
                    the observe_property reply, like mpv does
    """

    def __init__(self, properties=None, observe_values=None):
        self.properties = dict(properties or {})
        self.observe_values = dict(observe_values or {})
        self.received = []
        self.writers = []
        self.server = None

    async def start(self, path):
        self.server = await asyncio.start_unix_server(self._client, path=path)

    async def stop(self):
        for writer in self.writers:
            writer.close()
        self.server.close()
        await self.server.wait_closed()

    async def push(self, message):
        for writer in self.writers:
            await self._send(writer, message)

    async def _send(self, writer, message):
        writer.write(json.dumps(message).encode() + b"\n")
        await writer.drain()

    async def _client(self, reader, writer):
        self.writers.append(writer)
        while True:
            line = await reader.readline()
            if not line:
                break
            request = json.loads(line)
            command = request["command"]
            self.received.append(command)
            reply = self._answer(command)
            if reply is None:
                continue  # never answered
            reply["request_id"] = request["request_id"]
            await self._send(writer, reply)
            if command[0] == "observe_property" and command[2] in self.observe_values:
                await self._send(writer, {"event": "property-change", "id": command[1],
                                          "name": command[2],
                                          "data": self.observe_values[command[2]]})

    def _answer(self, command):
        name = command[0]
        if name == "get_property":
            if command[1] == "hang":
                return None
            if command[1] in self.properties:
                return {"error": "success", "data": self.properties[command[1]]}
            return {"error": "property unavailable"}
        if name == "set_property":
            self.properties[command[1]] = command[2]
            return {"error": "success"}
        if name == "bogus":
            return {"error": "invalid parameter"}
        return {"error": "success"}


def playlist_properties(*paths, current=0):
    props = {"playlist-count": len(paths)}
    for i, path in enumerate(paths):
        props[f"playlist/{i}/id"] = i + 1
        props[f"playlist/{i}/filename"] = path
        if i == current:
            props[f"playlist/{i}/current"] = True
    return props


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from any real config.json."""
    monkeypatch.setenv("MPV_HOME", str(tmp_path / "mpv"))
    monkeypatch.delenv("MPVREMOTE_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    config.reload_config()
    yield
    config.reload_config()


@pytest.fixture
def player():
    return FakePlayer()
