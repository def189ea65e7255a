import asyncio
import itertools
import random
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio
import websockets
from ocpp.routing import on
from ocpp.v16 import ChargePoint, call, call_result

from charger_sim.config import ChargePointIdentity, SimulatorConfig
from charger_sim.control import create_control_app
from charger_sim.operations import CentralSystemAction
from charger_sim.simulator import ChargerSimulator
from charger_sim.state_machine import ChargePointStateMachine
from charger_sim.transport import Transport


# -------- deterministic timers --------

class ManualTimer:
    def __init__(self, seq, due, period, callback):
        self.seq = seq
        self.due = due
        self.period = period
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class ManualTimers:
    """Timer service driven by ``advance`` instead of the wall clock."""

    def __init__(self):
        self.now = 0.0
        self.timers = []
        self._seq = itertools.count()

    def call_later(self, delay, callback):
        timer = ManualTimer(next(self._seq), self.now + delay, None, callback)
        self.timers.append(timer)
        return timer

    def call_every(self, period, callback):
        timer = ManualTimer(next(self._seq), self.now + period, period, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    async def advance(self, seconds=0.0):
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.due, t.seq))
            self.now = timer.due
            if timer.period is None:
                timer.fired = True
            else:
                timer.due += timer.period
            await timer.callback()
        self.now = target


# -------- in-memory transport --------

class RecordingTransport(Transport):
    """Records outbound calls and answers them like a permissive central system."""

    def __init__(self, identity=None, config=None, diagnostics=None):
        super().__init__(identity or ChargePointIdentity(), config or SimulatorConfig(), diagnostics)
        self.calls = []
        self.replies = {}
        self.established = False
        self.closed = False
        self._tx_counter = itertools.count(1)

    def calls_for(self, action):
        return [payload for name, payload in self.calls if name == CentralSystemAction(action)]

    async def establish(self):
        self.established = True

    async def invoke(self, action, payload):
        self.calls.append((CentralSystemAction(action), payload))
        reply = self.replies.get(CentralSystemAction(action))
        if isinstance(reply, Exception):
            raise reply
        if reply is not None:
            return reply
        if action == CentralSystemAction.StartTransaction:
            return {"transactionId": next(self._tx_counter), "idTagInfo": {"status": "Accepted"}}
        if action == CentralSystemAction.BootNotification:
            return {"status": "Accepted", "currentTime": "2026-10-17T10:00:00Z", "interval": 300}
        if action == CentralSystemAction.Heartbeat:
            return {"currentTime": "2026-10-17T10:00:00.000Z"}
        return {}

    async def close(self):
        self.closed = True


def make_config(**overrides):
    values = dict(
        heartbeat_interval_sec=0,
        start_delay_sec=0,
        stop_delay_sec=8,
        keepalive_timeout_sec=None,
        meter_values_interval_sec=20,
        reconnect_delay_sec=0.1,
        call_timeout_sec=5,
    )
    values.update(overrides)
    return SimulatorConfig(**values)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def transport(config):
    return RecordingTransport(config=config)


@pytest.fixture
def machine(config, transport, timers):
    sm = ChargePointStateMachine(config, transport.remote, timers, random.Random(7))
    transport.register_handlers(sm)
    return sm


# -------- OCPP 1.6 central system over a local websocket --------

class CentralSystemStub(ChargePoint):
    def __init__(self, id, connection):
        super().__init__(id, connection)
        self.boot_notifications = asyncio.Queue()
        self.heartbeats = asyncio.Queue()
        self.start_requests = asyncio.Queue()
        self.stop_requests = asyncio.Queue()
        self.meter_values = asyncio.Queue()
        self._tx_counter = itertools.count(1)

    async def remote_start(self, id_tag, connector_id=1):
        return await self.call(call.RemoteStartTransaction(id_tag=id_tag, connector_id=connector_id))

    async def remote_stop(self, transaction_id):
        return await self.call(call.RemoteStopTransaction(transaction_id=transaction_id))

    @on("BootNotification")
    async def on_boot(self, charge_point_model, charge_point_vendor, **kwargs):
        await self.boot_notifications.put(
            {"charge_point_model": charge_point_model, "charge_point_vendor": charge_point_vendor}
        )
        return call_result.BootNotification(
            current_time=datetime.now(timezone.utc).isoformat(), interval=300, status="Accepted"
        )

    @on("Heartbeat")
    async def on_heartbeat(self, **kwargs):
        await self.heartbeats.put(kwargs)
        return call_result.Heartbeat(current_time=datetime.now(timezone.utc).isoformat())

    @on("StartTransaction")
    async def on_start_transaction(self, connector_id, id_tag, meter_start, timestamp, **kwargs):
        await self.start_requests.put(
            {"connector_id": connector_id, "id_tag": id_tag, "meter_start": meter_start, "timestamp": timestamp}
        )
        return call_result.StartTransaction(
            transaction_id=next(self._tx_counter), id_tag_info={"status": "Accepted"}
        )

    @on("StopTransaction")
    async def on_stop_transaction(self, transaction_id, meter_stop, timestamp, **kwargs):
        await self.stop_requests.put({"transaction_id": transaction_id, "meter_stop": meter_stop})
        return call_result.StopTransaction()

    @on("MeterValues")
    async def on_meter_values(self, connector_id, meter_value, **kwargs):
        await self.meter_values.put({"connector_id": connector_id, "meter_value": meter_value, **kwargs})
        return call_result.MeterValues()

    @on("StatusNotification")
    async def on_status_notification(self, **kwargs):
        return call_result.StatusNotification()


class CentralSystemServer:
    def __init__(self):
        self.cp = None
        self.port = None
        self.paths = []
        self.connected = asyncio.Event()

    async def on_connect(self, websocket, *args):
        path = getattr(websocket, "path", None) or websocket.request.path
        self.paths.append(path)
        self.cp = CentralSystemStub(path.rstrip("/").split("/")[-1], websocket)
        self.connected.set()
        try:
            await self.cp.start()
        except websockets.exceptions.ConnectionClosed:
            pass


@pytest_asyncio.fixture
async def csms():
    server_state = CentralSystemServer()
    async with websockets.serve(
        server_state.on_connect, "127.0.0.1", 0, subprotocols=["ocpp1.6"]
    ) as server:
        server_state.port = server.sockets[0].getsockname()[1]
        yield server_state


@pytest_asyncio.fixture
async def simulator(csms):
    identity = ChargePointIdentity(
        identity="CP_1",
        central_system_endpoint=f"ws://127.0.0.1:{csms.port}/ocpp",
        vendor="Test",
        model="1",
        listen_port=None,
    )
    sim = ChargerSimulator(identity, make_config(stop_delay_sec=0, meter_values_interval_sec=0.05))
    await asyncio.wait_for(sim.start(), timeout=5)
    await asyncio.wait_for(csms.connected.wait(), timeout=5)
    transport = httpx.ASGITransport(app=create_control_app(sim))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield {"csms": csms, "client": client, "sim": sim}
    await sim.disconnect()
