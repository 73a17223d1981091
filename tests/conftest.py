import asyncio
import json

import pytest
from websockets.protocol import State

from broadcast import BroadcastEngine
from config import CONFIG_SCHEMA
from gateway_commands import GatewayCommands
from gateway_data import GatewayData
from liveness_monitor import LivenessMonitor
from message_router import MessageRouter
from messages import Message


class FakeClock:

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Records frames the gateway sends; can be made to fail or hang."""

    def __init__(self, fail: bool = False, hang: bool = False):
        self.state = State.OPEN
        self.fail = fail
        self.hang = hang
        self.sent: list[dict] = []

    async def send(self, frame: str) -> None:
        if self.fail:
            raise OSError("broken pipe")
        if self.hang:
            await asyncio.sleep(60)
        self.sent.append(json.loads(frame))

    def close(self) -> None:
        self.state = State.CLOSED

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]

    def of_type(self, message_type: str) -> list[dict]:
        return [frame for frame in self.sent if frame["type"] == message_type]

    def clear(self) -> None:
        self.sent.clear()


class Gateway:

    def __init__(self, config, clock: FakeClock):
        self.config = config
        self.clock = clock
        self.data = GatewayData(config, clock=clock)
        self.broadcast = BroadcastEngine(config, self.data)
        self.router = MessageRouter(config, self.data, self.broadcast)
        self.liveness = LivenessMonitor(config, self.data, self.broadcast)
        self.commands = GatewayCommands(self.data, self.router)

    @property
    def store(self):
        return self.data.store

    @property
    def registry(self):
        return self.data.registry

    @property
    def arbiter(self):
        return self.data.arbiter

    def connect(self, **kwargs):
        transport = FakeTransport(**kwargs)
        connection = self.registry.connect(transport, remote_address="127.0.0.1:5000")
        return connection, transport

    async def send(self, connection, message_type: str, data=None) -> None:
        await self.router.handle_frame(connection.connection_id, json.dumps({"type": message_type, "data": data}))

    async def connect_device(self, device_id: str = "coop-1", **data):
        connection, transport = self.connect()
        await self.send(connection, "device_info", {"deviceId": device_id, **data})
        transport.clear()
        return connection, transport


@pytest.fixture
def config():
    return CONFIG_SCHEMA({"server": {"send_timeout": 0.1}})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway(config, clock):
    return Gateway(config, clock)


@pytest.fixture
def message():
    return Message("sensor_data", {"temperature": 21.0})
