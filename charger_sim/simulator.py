import logging
import random
from typing import Optional

from .bridge import CentralSystem, Diagnostics, DiagnosticsSink
from .config import ChargePointIdentity, SimulatorConfig
from .state_machine import ChargePointStateMachine
from .timers import Timer, TimerService
from .transport import Transport, create_transport


class ChargerSimulator:
    """A simulated charge point connected to one central system.

    The transport is chosen from the identity: a listening port selects
    OCPP 1.5 over SOAP, otherwise OCPP 1.6-J over WebSocket.
    """

    def __init__(
        self,
        identity: ChargePointIdentity,
        config: Optional[SimulatorConfig] = None,
        transport: Optional[Transport] = None,
        timers: Optional[TimerService] = None,
        rng: Optional[random.Random] = None,
        diagnostics_sink: Optional[DiagnosticsSink] = None,
    ):
        self.identity = identity
        self.config = config or SimulatorConfig()
        diagnostics = Diagnostics(enabled=self.config.log_messages, sink=diagnostics_sink)
        self.transport = transport or create_transport(identity, self.config, diagnostics)
        self.timers = timers or TimerService()
        self.state_machine = ChargePointStateMachine(self.config, self.transport.remote, self.timers, rng)
        self.transport.register_handlers(self.state_machine)
        self._heartbeat: Optional[Timer] = None

    @property
    def central_system(self) -> CentralSystem:
        return self.transport.remote

    async def start(self) -> None:
        await self.transport.establish()
        logging.info(f"Connected to central system as {self.identity.identity}")

        if self.config.boot_on_start:
            try:
                conf = await self.central_system.boot_notification(
                    {
                        "chargePointVendor": self.identity.vendor,
                        "chargePointModel": self.identity.model,
                    }
                )
                logging.info(f"BootNotification: {conf.get('status')}")
            except Exception as e:
                logging.error(f"BootNotification failed: {e!r}")

        if self.config.heartbeat_interval_sec and self._heartbeat is None:
            self._heartbeat = self.timers.call_every(self.config.heartbeat_interval_sec, self._send_heartbeat)

    async def _send_heartbeat(self) -> None:
        try:
            await self.central_system.heartbeat()
        except Exception as e:
            logging.error(f"Heartbeat failed: {e!r}")

    def start_transaction(self, connector_id: int, id_tag: str, apply_delay: bool = True) -> bool:
        return self.state_machine.start_transaction(connector_id, id_tag, apply_delay)

    def stop_transaction(self, apply_delay: bool = True) -> bool:
        return self.state_machine.stop_transaction(apply_delay)

    async def disconnect(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        await self.transport.close()
