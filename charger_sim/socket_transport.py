import asyncio
import logging
from typing import Any, Dict, Optional

import websockets

from .bridge import Diagnostics
from .config import ChargePointIdentity, SimulatorConfig
from .ocpp_handlers import SocketChargePoint, build_call, result_payload
from .operations import CentralSystemAction
from .transport import Transport

SUBPROTOCOL = "ocpp1.6"


class ObservedConnection:
    """WebSocket wrapper that reports every frame to diagnostics."""

    def __init__(self, ws, diagnostics: Diagnostics, peer_id: str):
        self.ws = ws
        self.diagnostics = diagnostics
        self.peer_id = peer_id

    async def recv(self):
        message = await self.ws.recv()
        self.diagnostics.incoming(self.peer_id, message)
        return message

    async def send(self, message):
        self.diagnostics.outgoing(self.peer_id, message)
        await self.ws.send(message)


class SocketRpcTransport(Transport):
    """OCPP 1.6-J over a persistent WebSocket with reconnect and keepalive."""

    def __init__(self, identity: ChargePointIdentity, config: SimulatorConfig, diagnostics: Optional[Diagnostics] = None):
        super().__init__(identity, config, diagnostics)
        self.url = f"{identity.central_system_endpoint.rstrip('/')}/{identity.identity}"
        self.cp: Optional[SocketChargePoint] = None
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._connected = asyncio.Event()
        self._closing = False

    async def establish(self) -> None:
        self._closing = False
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
        await self._connected.wait()

    async def _run(self) -> None:
        keepalive = self.config.keepalive_timeout_sec
        while not self._closing:
            try:
                logging.info(f"Connecting to central system: {self.url}")
                async with websockets.connect(
                    self.url,
                    subprotocols=[SUBPROTOCOL],
                    ping_interval=keepalive,
                    ping_timeout=keepalive,
                ) as ws:
                    self._ws = ws
                    self.cp = SocketChargePoint(
                        self.identity.identity,
                        ObservedConnection(ws, self.diagnostics, self.identity.identity),
                        self.bridge,
                        response_timeout=self.config.call_timeout_sec,
                    )
                    self._connected.set()
                    logging.info("OCPP connected")
                    await self.cp.start()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self._closing:
                    logging.error(f"OCPP connection error: {e}")
            finally:
                self.cp = None
                self._ws = None
                self._connected.clear()
            if self._closing:
                break
            logging.info(f"Reconnecting to central system in {self.config.reconnect_delay_sec}s...")
            await asyncio.sleep(self.config.reconnect_delay_sec)
        logging.info("OCPP disconnected")

    async def invoke(self, action: CentralSystemAction, payload: Dict[str, Any]) -> Dict[str, Any]:
        cp = self.cp
        if cp is None:
            raise ConnectionError("not connected to central system")
        result = await cp.call(build_call(action, payload), suppress=False)
        return result_payload(result)

    async def close(self) -> None:
        self._closing = True
        if self._ws is not None:
            await self._ws.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
