import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Tuple

import httpx
import uvicorn
from fastapi import APIRouter, FastAPI, Request, Response

from .bridge import Diagnostics, Fault
from .config import ChargePointIdentity, SimulatorConfig
from .operations import CentralSystemAction, ChargePointAction, action_from_element, unwrap_message, wrap_message
from .soap import (
    ANONYMOUS,
    CONTENT_TYPE,
    CP_NS,
    CS_NS,
    WSA_NS,
    HeaderBuilder,
    SoapFault,
    build_envelope,
    build_fault,
    parse_envelope,
    pretty,
)
from .transport import Transport

FAULT_STATUS = 400


class SoapClient:
    """Correlated request/response client for the central system service."""

    def __init__(self, endpoint: str, http: httpx.AsyncClient, diagnostics: Diagnostics, peer_id: str, namespace: str = CS_NS):
        self.endpoint = endpoint
        self.http = http
        self.diagnostics = diagnostics
        self.peer_id = peer_id
        self.namespace = namespace
        self.headers = HeaderBuilder()

    def clear_soap_headers(self) -> None:
        self.headers.clear()

    async def call(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        # serialize before the first await so concurrent calls keep their own headers
        request = build_envelope(wrap_message(action, payload, "Request"), self.namespace, self.headers.elements)
        self.diagnostics.outgoing(self.peer_id, pretty(request))
        response = await self.http.post(
            self.endpoint,
            content=request,
            headers={"Content-Type": f'{CONTENT_TYPE}; action="/{action}"'},
        )
        self.diagnostics.incoming(self.peer_id, pretty(response.content))
        envelope = parse_envelope(response.content)
        if envelope.fault is not None:
            logging.error(f"Failed to call {action}: {envelope.fault}")
            raise SoapFault(envelope.fault)
        return unwrap_message(action, envelope.body, "Response")


class DocumentRpcTransport(Transport):
    """OCPP 1.5 over SOAP 1.2.

    The charge point service listens locally for central system calls; calls
    to the central system are independent HTTP exchanges correlated by
    WS-Addressing headers.
    """

    def __init__(
        self,
        identity: ChargePointIdentity,
        config: SimulatorConfig,
        diagnostics: Optional[Diagnostics] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(identity, config, diagnostics)
        self.endpoint = identity.central_system_endpoint
        self.http = http
        self.client: Optional[SoapClient] = None
        self.services = {action: self.bridge.callback_adapter(action) for action in ChargePointAction}
        self.router = self._build_router()
        self.app = FastAPI(title="Charge Point Service")
        self.app.include_router(self.router)
        self._server: Optional[uvicorn.Server] = None
        self._server_task: Optional[asyncio.Task] = None

    # ------ inbound ------

    def _build_router(self) -> APIRouter:
        router = APIRouter()

        @router.post(self.identity.listen_path)
        async def charge_point_service(request: Request) -> Response:
            status, body = await self.dispatch(await request.body())
            return Response(content=body, status_code=status, media_type=CONTENT_TYPE)

        return router

    async def dispatch(self, data: bytes) -> Tuple[int, bytes]:
        """Serve one SOAP request, returning the HTTP status and reply envelope."""
        self.diagnostics.incoming(self.identity.identity, pretty(data))
        try:
            envelope = parse_envelope(data)
            action = ChargePointAction(action_from_element(envelope.body_name, "Request"))
        except ValueError as e:
            logging.error(f"Rejecting SOAP request: {e}")
            return self._reply(None, Fault.processing_error(), {})

        loop = asyncio.get_running_loop()
        done: asyncio.Future = loop.create_future()

        def callback(result: Optional[Dict[str, Any]], fault: Optional[Fault] = None) -> None:
            if not done.done():
                done.set_result((result, fault))

        self.services[action](envelope.body[envelope.body_name], callback, envelope.headers)
        result, fault = await done
        return self._reply(action, fault, envelope.headers, result)

    def _reply(self, action, fault, request_headers, result=None) -> Tuple[int, bytes]:
        headers = HeaderBuilder()
        if request_headers.get("MessageID"):
            headers.add_text(WSA_NS, "RelatesTo", request_headers["MessageID"])
        if fault is not None:
            body, status = build_fault(fault, headers.elements), FAULT_STATUS
        else:
            headers.add_text(WSA_NS, "Action", f"/{action.value}Response", must_understand=True)
            body, status = build_envelope(result, CP_NS, headers.elements), 200
        self.diagnostics.outgoing(self.identity.identity, pretty(body))
        return status, body

    # ------ outbound ------

    async def establish(self) -> None:
        if self.http is None:
            self.http = httpx.AsyncClient(timeout=self.config.call_timeout_sec)
        self.client = SoapClient(self.endpoint, self.http, self.diagnostics, self.identity.identity)
        if self._server is None:
            self._server = uvicorn.Server(
                uvicorn.Config(
                    self.app,
                    host=self.identity.listen_host,
                    port=self.identity.listen_port,
                    loop="asyncio",
                    log_level="info",
                )
            )
            self._server_task = asyncio.create_task(self._server.serve())
            while not self._server.started and not self._server_task.done():
                await asyncio.sleep(0.05)
            if self._server_task.done():
                self._server_task.result()
            logging.info(f"OCPP Server is listening on port {self.identity.listen_port}")

    def _set_addressing_headers(self, action: CentralSystemAction) -> None:
        client = self.client
        client.clear_soap_headers()
        client.headers.add_text(CS_NS, "chargeBoxIdentity", self.identity.identity)
        client.headers.add_text(WSA_NS, "MessageID", f"urn:uuid:{uuid.uuid4()}")
        client.headers.add_address("From", self.identity.local_endpoint)
        client.headers.add_address("ReplyTo", ANONYMOUS)
        client.headers.add_text(WSA_NS, "To", self.endpoint)
        client.headers.add_text(WSA_NS, "Action", f"/{action.value}", must_understand=True)

    async def invoke(self, action: CentralSystemAction, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.client is None:
            if self.http is None:
                raise ConnectionError("SOAP transport is not established")
            self.client = SoapClient(self.endpoint, self.http, self.diagnostics, self.identity.identity)
        action = CentralSystemAction(action)
        self._set_addressing_headers(action)
        reply = await self.client.call(action.value, payload)
        return reply if isinstance(reply, dict) else {}

    async def close(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
            if self._server_task is not None:
                await self._server_task
            self._server = None
            self._server_task = None
        if self.http is not None:
            await self.http.aclose()
            self.http = None
        self.client = None
