import logging
from dataclasses import asdict, fields
from typing import Any, Dict

from ocpp.charge_point import camel_to_snake_case, remove_nones, snake_to_camel_case
from ocpp.routing import on
from ocpp.v16 import ChargePoint as CP
from ocpp.v16 import call, call_result

from .bridge import ProtocolBridge
from .operations import CentralSystemAction, ChargePointAction


def _build(module, action: str, payload: Dict[str, Any]):
    """Instantiate the 1.6 dataclass for ``action``, dropping fields it does not define."""
    cls = getattr(module, action)
    known = {f.name for f in fields(cls)}
    kwargs = camel_to_snake_case(payload)
    dropped = set(kwargs) - known
    if dropped:
        logging.debug(f"{action}: dropping fields unknown to OCPP 1.6: {sorted(dropped)}")
    return cls(**{k: v for k, v in kwargs.items() if k in known})


def _meter_values_16(payload: Dict[str, Any]) -> Dict[str, Any]:
    # 1.5 calls them values/values, 1.6 meterValue/sampledValue
    if "values" not in payload:
        return payload
    payload = dict(payload)
    payload["meterValue"] = [
        {"timestamp": mv.get("timestamp"), "sampledValue": mv.get("values", [])}
        for mv in payload.pop("values")
    ]
    return payload


def build_call(action: CentralSystemAction, payload: Dict[str, Any]):
    if action == CentralSystemAction.MeterValues:
        payload = _meter_values_16(payload)
    return _build(call, CentralSystemAction(action).value, payload)


def result_payload(result) -> Dict[str, Any]:
    if result is None:
        return {}
    return snake_to_camel_case(remove_nones(asdict(result)))


class SocketChargePoint(CP):
    """OCPP 1.6-J charge point whose inbound calls are served by the bridge."""

    def __init__(self, id, connection, bridge: ProtocolBridge, response_timeout: float = 30):
        super().__init__(id, connection, response_timeout=response_timeout)
        self.bridge = bridge

    async def _serve(self, action: ChargePointAction, kwargs: Dict[str, Any]):
        logging.info(f"{action.value} received")
        reply = await self.bridge.serve(action, snake_to_camel_case(kwargs))
        return _build(call_result, action.value, reply)

    # ====== Central System -> Charge Point ======

    @on(ChargePointAction.RemoteStartTransaction.value)
    async def on_remote_start_transaction(self, **kwargs):
        return await self._serve(ChargePointAction.RemoteStartTransaction, kwargs)

    @on(ChargePointAction.RemoteStopTransaction.value)
    async def on_remote_stop_transaction(self, **kwargs):
        return await self._serve(ChargePointAction.RemoteStopTransaction, kwargs)

    @on(ChargePointAction.GetConfiguration.value)
    async def on_get_configuration(self, **kwargs):
        return await self._serve(ChargePointAction.GetConfiguration, kwargs)

    @on(ChargePointAction.ChangeConfiguration.value)
    async def on_change_configuration(self, **kwargs):
        return await self._serve(ChargePointAction.ChangeConfiguration, kwargs)

    @on(ChargePointAction.ReserveNow.value)
    async def on_reserve_now(self, **kwargs):
        return await self._serve(ChargePointAction.ReserveNow, kwargs)

    @on(ChargePointAction.CancelReservation.value)
    async def on_cancel_reservation(self, **kwargs):
        return await self._serve(ChargePointAction.CancelReservation, kwargs)

    @on(ChargePointAction.Reset.value)
    async def on_reset(self, **kwargs):
        return await self._serve(ChargePointAction.Reset, kwargs)

    @on(ChargePointAction.TriggerMessage.value)
    async def on_trigger_message(self, **kwargs):
        return await self._serve(ChargePointAction.TriggerMessage, kwargs)

    @on(ChargePointAction.UpdateFirmware.value)
    async def on_update_firmware(self, **kwargs):
        return await self._serve(ChargePointAction.UpdateFirmware, kwargs)
