import random

import pytest

from charger_sim import cli
from charger_sim.config import ChargePointIdentity
from charger_sim.operations import CentralSystemAction
from charger_sim.simulator import ChargerSimulator
from charger_sim.state_machine import ChargePointState

from conftest import RecordingTransport, make_config


@pytest.fixture
def sim(timers):
    config = make_config()
    identity = ChargePointIdentity(identity="test", listen_port=None)
    return ChargerSimulator(
        identity, config, transport=RecordingTransport(identity, config), timers=timers, rng=random.Random(1)
    )


def test_parse_args_accepts_url_as_option():
    args = cli.parse_args(["-s", "ws://cs/ocpp", "-i", "CP_9", "-c", "2", "-t", "TAG"])
    assert args.cs_url is None
    assert args.cs_url_option == "ws://cs/ocpp"
    assert args.charger_id == "CP_9"
    assert args.connector_id == 2
    assert args.id_tag == "TAG"


def test_parse_args_defaults():
    args = cli.parse_args(["ws://cs/ocpp"])
    assert args.cs_url == "ws://cs/ocpp"
    assert args.charger_id == "test"
    assert args.connector_id == 1
    assert args.id_tag == "123456"


@pytest.mark.asyncio
@pytest.mark.parametrize("key,status", [("a", "Available"), ("p", "Preparing"), ("c", "Charging"), ("f", "Finishing")])
async def test_status_keys(sim, key, status):
    commands = cli.build_commands(sim, 2, "TAG")
    await cli.run_command(commands, key)
    assert sim.transport.calls_for(CentralSystemAction.StatusNotification) == [
        {"connectorId": 2, "errorCode": "NoError", "status": status}
    ]


@pytest.mark.asyncio
async def test_transaction_keys(sim, timers):
    commands = cli.build_commands(sim, 1, "TAG")

    await cli.run_command(commands, "u")
    assert sim.transport.calls_for(CentralSystemAction.Authorize) == [{"idTag": "TAG"}]

    assert await cli.run_command(commands, "s") is True
    await timers.advance(0)
    assert sim.state_machine.state == ChargePointState.CHARGING

    assert await cli.run_command(commands, "t") is True
    await timers.advance(8)
    assert sim.state_machine.state == ChargePointState.IDLE
    assert sim.transport.calls_for(CentralSystemAction.StopTransaction)[0]["transactionId"] == 1


@pytest.mark.asyncio
async def test_unknown_and_failing_commands(sim):
    commands = cli.build_commands(sim, 1, "TAG")
    assert await cli.run_command(commands, "x") is None

    sim.transport.replies[CentralSystemAction.Authorize] = ConnectionError("not connected to central system")
    assert await cli.run_command(commands, "u") is None


def test_main_without_url_prints_usage(capsys):
    assert cli.main([]) is None
    assert "usage: charger-simulator" in capsys.readouterr().out
