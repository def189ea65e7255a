import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .bridge import CentralSystem, ChargePointHandlers
from .config import SimulatorConfig
from .configuration import ConfigurationStore
from .operations import Status
from .timers import Timer, TimerService

ENERGY_MEASURAND = "Energy.Active.Import.Register"
SOC_MEASURAND = "SoC"


class ChargePointState(str, Enum):
    IDLE = "Idle"
    START_PENDING = "StartPending"
    CHARGING = "Charging"
    STOP_PENDING = "StopPending"


@dataclass
class Transaction:
    connector_id: int
    id_tag: str
    transaction_id: Optional[int] = None
    accumulated_energy: int = 0
    sampling_timer: Optional[Timer] = None


def _status(status: str) -> Dict[str, str]:
    return {"status": status}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ChargePointStateMachine(ChargePointHandlers):
    """Single-connector transaction lifecycle driven by timers and inbound calls.

    Idle -> StartPending -> Charging -> StopPending -> Idle. All state lives on
    this object and is only touched from the event loop, between awaits.
    """

    def __init__(
        self,
        config: SimulatorConfig,
        remote: CentralSystem,
        timers: Optional[TimerService] = None,
        rng: Optional[random.Random] = None,
        configuration: Optional[ConfigurationStore] = None,
    ):
        self.config = config
        self.remote = remote
        self.timers = timers or TimerService()
        self.rng = rng or random.Random()
        self.configuration = configuration or ConfigurationStore.defaults(config)
        self.state = ChargePointState.IDLE
        self.transaction: Optional[Transaction] = None

    @property
    def charging(self) -> bool:
        return self.transaction is not None and self.transaction.sampling_timer is not None

    # ------ driver operations ------

    def start_transaction(self, connector_id: int, id_tag: str, apply_delay: bool = True) -> bool:
        if self.state != ChargePointState.IDLE:
            logging.info(f"Start rejected, charge point is {self.state.value}")
            return False
        self.transaction = Transaction(connector_id=int(connector_id), id_tag=str(id_tag))
        self.state = ChargePointState.START_PENDING
        delay = self.config.start_delay_sec if apply_delay else 0
        self.timers.call_later(delay, self._send_start)
        logging.info(f"Transaction start scheduled: connector={connector_id}, idTag={id_tag}, delay={delay}s")
        return True

    def stop_transaction(self, apply_delay: bool = True, transaction_id: Optional[int] = None) -> bool:
        tx = self.transaction
        if self.state != ChargePointState.CHARGING or tx is None or tx.sampling_timer is None:
            logging.info(f"Stop rejected, charge point is {self.state.value}")
            return False
        tx.sampling_timer.cancel()
        tx.sampling_timer = None
        self.state = ChargePointState.STOP_PENDING
        if transaction_id is None:
            transaction_id = tx.transaction_id
        delay = self.config.stop_delay_sec if apply_delay else 0

        async def send_stop():
            await self._send_stop(transaction_id)

        self.timers.call_later(delay, send_stop)
        logging.info(f"Transaction stop scheduled: tx_id={transaction_id}, delay={delay}s")
        return True

    # ------ timer callbacks ------

    async def _send_start(self) -> None:
        tx = self.transaction
        if tx is None or self.state != ChargePointState.START_PENDING:
            return
        try:
            conf = await self.remote.start_transaction(
                {
                    "connectorId": tx.connector_id,
                    "idTag": tx.id_tag,
                    "timestamp": _now(),
                    "meterStart": 0,
                }
            )
            transaction_id = int(conf["transactionId"])
        except Exception as e:
            logging.error(f"StartTransaction failed, back to idle: {e!r}")
            self._reset()
            return

        auth_status = (conf.get("idTagInfo") or {}).get("status", Status.ACCEPTED)
        if auth_status != Status.ACCEPTED:
            logging.warning(f"StartTransaction not authorized ({auth_status}), back to idle")
            self._reset()
            return

        tx.transaction_id = transaction_id
        tx.accumulated_energy = 0
        tx.sampling_timer = self.timers.call_every(self._sample_interval(), self._sample_meter)
        self.state = ChargePointState.CHARGING
        logging.info(f"StartTransaction confirmed: connector={tx.connector_id}, tx_id={transaction_id}")

    async def _sample_meter(self) -> None:
        tx = self.transaction
        if tx is None or self.state != ChargePointState.CHARGING:
            return
        tx.accumulated_energy += self._draw_increment()
        payload = {
            "connectorId": tx.connector_id,
            "transactionId": tx.transaction_id,
            "values": [
                {
                    "timestamp": _now(),
                    "values": [
                        {"value": str(tx.accumulated_energy), "measurand": ENERGY_MEASURAND, "unit": "Wh"},
                        {"value": self.config.soc_sample, "measurand": SOC_MEASURAND, "unit": "Percent"},
                    ],
                }
            ],
        }
        try:
            await self.remote.meter_values(payload)
        except Exception as e:
            logging.error(f"MeterValues failed: {e!r}")
            return
        logging.info(f"MeterValues: cid={tx.connector_id}, energy(Wh)={tx.accumulated_energy}")

    async def _send_stop(self, transaction_id: Optional[int]) -> None:
        tx = self.transaction
        if tx is None or self.state != ChargePointState.STOP_PENDING:
            return
        try:
            await self.remote.stop_transaction(
                {
                    "transactionId": transaction_id,
                    "timestamp": _now(),
                    "meterStop": tx.accumulated_energy,
                }
            )
            logging.info(f"StopTransaction sent: tx_id={transaction_id}, meterStop={tx.accumulated_energy}")
        except Exception as e:
            logging.error(f"StopTransaction failed: {e!r}")
        self._reset()

    def _reset(self) -> None:
        tx = self.transaction
        if tx is not None and tx.sampling_timer is not None:
            tx.sampling_timer.cancel()
        self.transaction = None
        self.state = ChargePointState.IDLE

    def _draw_increment(self) -> int:
        small, large = self.config.energy_increments
        return large if self.rng.random() < self.config.large_increment_probability else small

    def _sample_interval(self) -> float:
        entry = self.configuration.get("MeterValueSampleInterval")
        try:
            interval = float(entry.value) if entry is not None else 0
        except ValueError:
            interval = 0
        return interval if interval > 0 else self.config.meter_values_interval_sec

    # ====== Central System -> Charge Point ======

    async def remote_start_transaction(self, request: Dict[str, Any]) -> Dict[str, Any]:
        connector_id = int(request.get("connectorId") or 1)
        accepted = self.start_transaction(connector_id, request.get("idTag", ""))
        return _status(Status.ACCEPTED if accepted else Status.REJECTED)

    async def remote_stop_transaction(self, request: Dict[str, Any]) -> Dict[str, Any]:
        transaction_id = request.get("transactionId")
        if transaction_id is not None:
            transaction_id = int(transaction_id)
        accepted = self.stop_transaction(transaction_id=transaction_id)
        return _status(Status.ACCEPTED if accepted else Status.REJECTED)

    async def get_configuration(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {"configurationKey": self.configuration.as_list()}

    async def change_configuration(self, request: Dict[str, Any]) -> Dict[str, Any]:
        key = request.get("key")
        if not self.configuration.change(key, request.get("value", "")):
            logging.info(f"ChangeConfiguration: unknown key {key} ignored")
        return _status(Status.ACCEPTED)

    async def reserve_now(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return _status(Status.ACCEPTED)

    async def cancel_reservation(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return _status(Status.ACCEPTED)

    async def reset(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return _status(Status.ACCEPTED)

    async def trigger_message(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return _status(Status.ACCEPTED)

    async def update_firmware(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return _status(Status.ACCEPTED)
