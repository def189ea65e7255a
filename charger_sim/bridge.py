"""Glue between the charge point's handlers and the wire transports.

Handlers are plain coroutines taking and returning payload dicts keyed by
OCPP field names. The bridge converts timestamps on the way in and out,
adapts handlers to the callback style of the SOAP listener, and exposes the
central system's operations as awaitable methods.
"""

import abc
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .dates import from_wire, to_wire
from .operations import CentralSystemAction, ChargePointAction, handler_name, wrap_message

Payload = Dict[str, Any]
DiagnosticsSink = Callable[[str, str, str], None]
ReplyCallback = Callable[[Optional[Payload], Optional["Fault"]], None]

IN = "in"
OUT = "out"


@dataclass(frozen=True)
class Fault:
    code: str
    subcode: str
    reason: str

    @classmethod
    def processing_error(cls) -> "Fault":
        return cls(code="soap:Sender", subcode="rpc:BadArguments", reason="Processing Error")


def log_envelope(direction: str, peer_id: str, text: str) -> None:
    logging.debug(f"OCPP {direction} [{peer_id}] {text}")


class Diagnostics:
    """Hands every envelope to a sink unless request logging is switched off."""

    def __init__(self, enabled: bool = True, sink: Optional[DiagnosticsSink] = None):
        self.enabled = enabled
        self.sink = sink or log_envelope

    def incoming(self, peer_id: str, text: str) -> None:
        self._emit(IN, peer_id, text)

    def outgoing(self, peer_id: str, text: str) -> None:
        self._emit(OUT, peer_id, text)

    def _emit(self, direction: str, peer_id: str, text: str) -> None:
        if not self.enabled:
            return
        try:
            self.sink(direction, peer_id, text)
        except Exception as e:
            logging.error(f"Diagnostics sink failed: {e}")


class ChargePointHandlers(abc.ABC):
    """Operations a central system may invoke on the charge point."""

    @abc.abstractmethod
    async def remote_start_transaction(self, request: Payload) -> Payload: ...

    @abc.abstractmethod
    async def remote_stop_transaction(self, request: Payload) -> Payload: ...

    @abc.abstractmethod
    async def get_configuration(self, request: Payload) -> Payload: ...

    @abc.abstractmethod
    async def change_configuration(self, request: Payload) -> Payload: ...

    @abc.abstractmethod
    async def reserve_now(self, request: Payload) -> Payload: ...

    @abc.abstractmethod
    async def cancel_reservation(self, request: Payload) -> Payload: ...

    @abc.abstractmethod
    async def reset(self, request: Payload) -> Payload: ...

    @abc.abstractmethod
    async def trigger_message(self, request: Payload) -> Payload: ...

    @abc.abstractmethod
    async def update_firmware(self, request: Payload) -> Payload: ...

    def handler_for(self, action: ChargePointAction):
        return getattr(self, handler_name(action))


class ProtocolBridge:
    def __init__(self, diagnostics: Optional[Diagnostics] = None):
        self.diagnostics = diagnostics or Diagnostics()
        self.handlers: Optional[ChargePointHandlers] = None

    def register_handlers(self, handlers: ChargePointHandlers) -> None:
        self.handlers = handlers

    async def serve(self, action: ChargePointAction, request: Optional[Payload]) -> Payload:
        """Run the handler for ``action`` on a wire payload and return a wire reply."""
        if self.handlers is None:
            raise RuntimeError("no handlers registered")
        handler = self.handlers.handler_for(ChargePointAction(action))
        reply = await handler(from_wire(request or {}))
        return to_wire(reply)

    def callback_adapter(self, action: ChargePointAction) -> "CallbackAdapter":
        return CallbackAdapter(self, action)


class CallbackAdapter:
    """Serves one operation for a listener that expects a completion callback.

    The callback receives either the wrapped ``<operation>Response`` payload or,
    when the handler fails or the payload is malformed, the processing Fault.
    Nothing is raised to the caller.
    """

    def __init__(self, bridge: ProtocolBridge, action: ChargePointAction):
        self.bridge = bridge
        self.action = ChargePointAction(action)

    def __call__(self, request: Any, callback: ReplyCallback, headers: Optional[Dict[str, str]] = None) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(self._complete(request, callback))

    async def _complete(self, request: Any, callback: ReplyCallback) -> None:
        try:
            if request is not None and not isinstance(request, dict):
                raise ValueError(f"malformed {self.action.value} payload: {request!r}")
            reply = await self.bridge.serve(self.action, request)
        except Exception as e:
            logging.error(f"Failed to serve {self.action.value}: {e}")
            callback(None, Fault.processing_error())
            return
        callback(wrap_message(self.action, reply, "Response"), None)


class CentralSystem:
    """Awaitable proxy for the central system's operations."""

    def __init__(self, transport):
        self._transport = transport

    async def call(self, action: CentralSystemAction, payload: Optional[Payload] = None) -> Payload:
        action = CentralSystemAction(action)
        reply = await self._transport.invoke(action, to_wire(payload or {}))
        return from_wire(reply or {})

    async def boot_notification(self, payload: Payload) -> Payload:
        return await self.call(CentralSystemAction.BootNotification, payload)

    async def heartbeat(self, payload: Optional[Payload] = None) -> Payload:
        return await self.call(CentralSystemAction.Heartbeat, payload)

    async def status_notification(self, payload: Payload) -> Payload:
        return await self.call(CentralSystemAction.StatusNotification, payload)

    async def authorize(self, payload: Payload) -> Payload:
        return await self.call(CentralSystemAction.Authorize, payload)

    async def start_transaction(self, payload: Payload) -> Payload:
        return await self.call(CentralSystemAction.StartTransaction, payload)

    async def stop_transaction(self, payload: Payload) -> Payload:
        return await self.call(CentralSystemAction.StopTransaction, payload)

    async def meter_values(self, payload: Payload) -> Payload:
        return await self.call(CentralSystemAction.MeterValues, payload)

    async def data_transfer(self, payload: Payload) -> Payload:
        return await self.call(CentralSystemAction.DataTransfer, payload)
