import argparse
import asyncio
import logging
import sys
from typing import Awaitable, Callable, Dict, Optional

import uvicorn

from . import config as defaults
from .config import ChargePointIdentity, SimulatorConfig
from .control import create_control_app
from .simulator import ChargerSimulator

KEYS_HELP = """Supported keys (type a key and press Enter):
    q:        quit

    Connector {connector_id} status
    ---
    a:        send Available status
    p:        send Preparing status
    c:        send Charging status
    f:        send Finishing status

    Transaction on connector {connector_id}, tag {id_tag}
    --
    u:        Authorize
    s:        StartTransaction
    t:        StopTransaction
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="charger-simulator",
        description="Start OCPP charging station simulator, connect simulator to Central System server.",
    )
    parser.add_argument(
        "cs_url",
        nargs="?",
        metavar="URL",
        help="URL of the Central System server to connect to, ws://server.name/path "
        "(or the SOAP endpoint when --listen-port is given)",
    )
    parser.add_argument("-s", "--cs-url", dest="cs_url_option", metavar="URL", help="same as URL")
    parser.add_argument("-i", "--charger-id", default="test", help="OCPP ID to be used for simulating charger")
    parser.add_argument("-c", "--connector-id", type=int, default=1, help="ID of the connector to send status for")
    parser.add_argument("-t", "--id-tag", default="123456", help="ID Tag to start transaction")
    parser.add_argument("--listen-port", type=int, default=defaults.LISTEN_PORT, help="serve OCPP 1.5 SOAP on this port")
    parser.add_argument("--listen-path", default=defaults.LISTEN_PATH, help="path of the SOAP charge point service")
    parser.add_argument("--http-port", type=int, default=defaults.HTTP_PORT, help="serve the HTTP control API on this port")
    parser.add_argument("--no-request-logging", action="store_true", help="do not log OCPP envelopes")
    parser.add_argument("-v", "--verbose", action="store_true", help="log OCPP envelopes at debug level")
    return parser


def parse_args(argv=None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def build_commands(simulator: ChargerSimulator, connector_id: int, id_tag: str) -> Dict[str, Callable[[], Awaitable]]:
    async def send_status(status: str):
        return await simulator.central_system.status_notification(
            {"connectorId": connector_id, "errorCode": "NoError", "status": status}
        )

    async def start():
        return simulator.start_transaction(connector_id, id_tag)

    async def stop():
        return simulator.stop_transaction()

    return {
        "a": lambda: send_status("Available"),
        "p": lambda: send_status("Preparing"),
        "c": lambda: send_status("Charging"),
        "f": lambda: send_status("Finishing"),
        "u": lambda: simulator.central_system.authorize({"idTag": id_tag}),
        "s": start,
        "t": stop,
    }


async def run_command(commands, key: str) -> Optional[object]:
    command = commands.get(key)
    if command is None:
        return None
    try:
        result = await command()
    except Exception as e:
        logging.error(f"Command {key} failed: {e!r}")
        return None
    logging.info(f"{key}: {result}")
    return result


async def read_commands(commands) -> None:
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            return
        key = line.strip()
        if key == "q":
            return
        if key:
            await run_command(commands, key)


async def run(args: argparse.Namespace) -> None:
    identity = ChargePointIdentity(
        identity=args.charger_id,
        central_system_endpoint=args.cs_url,
        listen_port=args.listen_port,
        listen_path=args.listen_path,
    )
    simulator = ChargerSimulator(identity, SimulatorConfig(log_messages=not args.no_request_logging))

    api_task = None
    if args.http_port:
        server = uvicorn.Server(
            uvicorn.Config(create_control_app(simulator), host="0.0.0.0", port=args.http_port, loop="asyncio", log_level="info")
        )
        api_task = asyncio.create_task(server.serve())

    await simulator.start()
    logging.info("Connected to Central System")
    logging.info(KEYS_HELP.format(connector_id=args.connector_id, id_tag=args.id_tag))
    try:
        await read_commands(build_commands(simulator, args.connector_id, args.id_tag))
    finally:
        await simulator.disconnect()
        if api_task is not None:
            api_task.cancel()


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.cs_url = args.cs_url or args.cs_url_option
    if not args.cs_url or not args.charger_id or not args.connector_id:
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )
    logging.info(
        f"Starting charger simulator: csURL={args.cs_url}, connectorId={args.connector_id}, "
        f"chargerId={args.charger_id}, idTag={args.id_tag}"
    )
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
