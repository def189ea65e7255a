import random

import httpx
import pytest
import pytest_asyncio

from charger_sim.config import ChargePointIdentity
from charger_sim.control import create_control_app
from charger_sim.operations import CentralSystemAction
from charger_sim.simulator import ChargerSimulator

from conftest import RecordingTransport, make_config


@pytest.fixture
def sim(timers):
    config = make_config(heartbeat_interval_sec=30)
    identity = ChargePointIdentity(identity="CP_7", vendor="Test", model="1", listen_port=None)
    transport = RecordingTransport(identity, config)
    return ChargerSimulator(identity, config, transport=transport, timers=timers, rng=random.Random(3))


@pytest_asyncio.fixture
async def client(sim):
    transport = httpx.ASGITransport(app=create_control_app(sim))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.mark.asyncio
async def test_start_boots_and_schedules_heartbeat(sim, timers):
    await sim.start()
    assert sim.transport.established
    boots = sim.transport.calls_for(CentralSystemAction.BootNotification)
    assert boots == [{"chargePointVendor": "Test", "chargePointModel": "1"}]

    await timers.advance(90)
    assert len(sim.transport.calls_for(CentralSystemAction.Heartbeat)) == 3

    await sim.disconnect()
    assert sim.transport.closed
    await timers.advance(90)
    assert len(sim.transport.calls_for(CentralSystemAction.Heartbeat)) == 3


@pytest.mark.asyncio
async def test_failed_boot_does_not_stop_start(sim, timers):
    sim.transport.replies[CentralSystemAction.BootNotification] = TimeoutError("no reply")
    sim.transport.replies[CentralSystemAction.Heartbeat] = ConnectionError("gone")
    await sim.start()
    await timers.advance(60)
    # heartbeats keep being attempted
    assert len(sim.transport.calls_for(CentralSystemAction.Heartbeat)) == 2


@pytest.mark.asyncio
async def test_state_reports_transaction(sim, client, timers):
    resp = await client.get("/state")
    assert resp.json()["state"] == "Idle"
    assert resp.json()["transactionId"] is None

    resp = await client.post("/start", json={"idTag": "ABC"})
    assert resp.json() == {"ok": True, "state": "StartPending"}
    await timers.advance(0)

    body = (await client.get("/state")).json()
    assert body["identity"] == "CP_7"
    assert body["state"] == "Charging"
    assert body["transactionId"] == 1
    assert body["meterWh"] == 0
    assert [k["key"] for k in body["configurationKey"]] == [
        "HeartBeatInterval",
        "ResetRetries",
        "MeterValueSampleInterval",
    ]
    start = sim.transport.calls_for(CentralSystemAction.StartTransaction)[0]
    assert start["idTag"] == "ABC"
    assert start["connectorId"] == 1


@pytest.mark.asyncio
async def test_start_and_stop_are_rejected_out_of_order(client, timers):
    resp = await client.post("/stop")
    assert resp.json() == {"ok": False, "state": "Idle"}

    await client.post("/start", json={"connectorId": 2, "applyDelay": False})
    resp = await client.post("/start", json={"connectorId": 2})
    assert resp.json() == {"ok": False, "state": "StartPending"}


@pytest.mark.asyncio
async def test_stop_with_delay(sim, client, timers):
    await client.post("/start", json={"applyDelay": False})
    await timers.advance(0)
    resp = await client.post("/stop")
    assert resp.json() == {"ok": True, "state": "StopPending"}
    await timers.advance(8)
    assert len(sim.transport.calls_for(CentralSystemAction.StopTransaction)) == 1
    assert (await client.get("/state")).json()["state"] == "Idle"


@pytest.mark.asyncio
async def test_status_and_authorize(sim, client):
    sim.transport.replies[CentralSystemAction.Authorize] = {"idTagInfo": {"status": "Accepted"}}

    resp = await client.post("/status/1", params={"status": "Available"})
    assert resp.status_code == 200
    assert sim.transport.calls_for(CentralSystemAction.StatusNotification) == [
        {"connectorId": 1, "errorCode": "NoError", "status": "Available"}
    ]

    resp = await client.post("/authorize", params={"id_tag": "T1"})
    assert resp.json() == {"ok": True, "response": {"idTagInfo": {"status": "Accepted"}}}
    assert sim.transport.calls_for(CentralSystemAction.Authorize) == [{"idTag": "T1"}]


@pytest.mark.asyncio
async def test_data_transfer_drops_missing_fields(sim, client):
    resp = await client.post("/data_transfer", json={"vendorId": "acme", "data": "hello"})
    assert resp.status_code == 200
    assert sim.transport.calls_for(CentralSystemAction.DataTransfer) == [{"vendorId": "acme", "data": "hello"}]


@pytest.mark.asyncio
async def test_remote_failure_maps_to_bad_gateway(sim, client):
    sim.transport.replies[CentralSystemAction.Authorize] = ConnectionError("not connected to central system")
    resp = await client.post("/authorize")
    assert resp.status_code == 502
    assert "ConnectionError" in resp.json()["detail"]
