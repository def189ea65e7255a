import re
from enum import Enum
from typing import Any, Dict


class CentralSystemAction(str, Enum):
    """Operations the charge point calls on the central system."""

    BootNotification = "BootNotification"
    Heartbeat = "Heartbeat"
    StatusNotification = "StatusNotification"
    Authorize = "Authorize"
    StartTransaction = "StartTransaction"
    StopTransaction = "StopTransaction"
    MeterValues = "MeterValues"
    DataTransfer = "DataTransfer"


class ChargePointAction(str, Enum):
    """Operations the central system calls on the charge point."""

    RemoteStartTransaction = "RemoteStartTransaction"
    RemoteStopTransaction = "RemoteStopTransaction"
    GetConfiguration = "GetConfiguration"
    ChangeConfiguration = "ChangeConfiguration"
    ReserveNow = "ReserveNow"
    CancelReservation = "CancelReservation"
    Reset = "Reset"
    TriggerMessage = "TriggerMessage"
    UpdateFirmware = "UpdateFirmware"


class Status:
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


def lower_camel(name: str) -> str:
    return name[:1].lower() + name[1:]


def handler_name(action: ChargePointAction) -> str:
    """``RemoteStartTransaction`` -> ``remote_start_transaction``"""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", action.value).lower()


def wrap_message(action: str, message: Any, suffix: str) -> Dict[str, Any]:
    """Wrap a SOAP body as ``{"<operation>Request": message}`` or ``...Response``."""
    return {lower_camel(_name(action)) + suffix: message}


def unwrap_message(action: str, wrapped: Dict[str, Any], suffix: str) -> Any:
    return wrapped[lower_camel(_name(action)) + suffix]


def action_from_element(element_name: str, suffix: str) -> str:
    """``remoteStartTransactionRequest`` -> ``RemoteStartTransaction``"""
    if not element_name.endswith(suffix):
        raise ValueError(f"unexpected body element {element_name}")
    base = element_name[: -len(suffix)]
    return base[:1].upper() + base[1:]


def _name(action) -> str:
    return action.value if isinstance(action, Enum) else action
