import abc
from typing import Any, Dict, Optional

from .bridge import CentralSystem, ChargePointHandlers, Diagnostics, ProtocolBridge
from .config import ChargePointIdentity, SimulatorConfig
from .operations import CentralSystemAction


class Transport(abc.ABC):
    """A channel to the central system.

    Inbound calls are served by the registered handlers through the bridge;
    outbound calls go through ``remote``.
    """

    def __init__(self, identity: ChargePointIdentity, config: SimulatorConfig, diagnostics: Optional[Diagnostics] = None):
        self.identity = identity
        self.config = config
        self.bridge = ProtocolBridge(diagnostics)
        self.remote = CentralSystem(self)

    @property
    def diagnostics(self) -> Diagnostics:
        return self.bridge.diagnostics

    def register_handlers(self, handlers: ChargePointHandlers) -> None:
        self.bridge.register_handlers(handlers)

    @abc.abstractmethod
    async def establish(self) -> None: ...

    @abc.abstractmethod
    async def invoke(self, action: CentralSystemAction, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    @abc.abstractmethod
    async def close(self) -> None: ...


def create_transport(identity: ChargePointIdentity, config: SimulatorConfig, diagnostics: Optional[Diagnostics] = None) -> Transport:
    if identity.uses_soap:
        from .soap_transport import DocumentRpcTransport

        return DocumentRpcTransport(identity, config, diagnostics)

    from .socket_transport import SocketRpcTransport

    return SocketRpcTransport(identity, config, diagnostics)
