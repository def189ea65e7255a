import os
from dataclasses import dataclass
from typing import Optional, Tuple


def _env_float(name: str, default: str) -> Optional[float]:
    value = os.getenv(name, default)
    if value in ("", "none", "None"):
        return None
    return float(value)


CSMS_URL = os.getenv("CSMS_URL", "ws://127.0.0.1:9000/ocpp")
CPID = os.getenv("CPID", "test")
CP_VENDOR = os.getenv("CP_VENDOR", "Test")
CP_MODEL = os.getenv("CP_MODEL", "1")

# presence of a listening port selects the SOAP (OCPP 1.5) transport
LISTEN_PORT = int(os.getenv("LISTEN_PORT", "0")) or None
LISTEN_PATH = os.getenv("LISTEN_PATH", "/")
LISTEN_HOST = os.getenv("LISTEN_HOST", "0.0.0.0")

HEARTBEAT_SEC = float(os.getenv("HEARTBEAT_SEC", "30"))
METER_PERIOD_SEC = float(os.getenv("METER_PERIOD_SEC", "20"))
START_DELAY_SEC = float(os.getenv("START_DELAY_SEC", "8"))
STOP_DELAY_SEC = float(os.getenv("STOP_DELAY_SEC", "8"))
KEEPALIVE_TIMEOUT_SEC = _env_float("KEEPALIVE_TIMEOUT_SEC", "50")  # "none" disables pings
CALL_TIMEOUT_SEC = float(os.getenv("CALL_TIMEOUT_SEC", "30"))
RECONNECT_DELAY_SEC = float(os.getenv("RECONNECT_DELAY_SEC", "5"))
HTTP_PORT = int(os.getenv("HTTP_PORT", "0")) or None
NO_REQUEST_LOGGING = bool(os.getenv("NO_REQUEST_LOGGING"))


@dataclass(frozen=True)
class ChargePointIdentity:
    """Who the simulated charge point is and where the central system lives."""

    identity: str = CPID
    central_system_endpoint: str = CSMS_URL
    vendor: str = CP_VENDOR
    model: str = CP_MODEL
    listen_port: Optional[int] = LISTEN_PORT
    listen_path: str = LISTEN_PATH
    listen_host: str = LISTEN_HOST
    # address announced in the WS-Addressing From header, derived when unset
    listen_url: Optional[str] = None

    @property
    def uses_soap(self) -> bool:
        return self.listen_port is not None

    @property
    def local_endpoint(self) -> str:
        if self.listen_url:
            return self.listen_url
        return f"http://localhost:{self.listen_port}{self.listen_path}"


@dataclass
class SimulatorConfig:
    heartbeat_interval_sec: float = HEARTBEAT_SEC  # 0 disables heartbeats
    boot_on_start: bool = True
    start_delay_sec: float = START_DELAY_SEC
    stop_delay_sec: float = STOP_DELAY_SEC
    keepalive_timeout_sec: Optional[float] = KEEPALIVE_TIMEOUT_SEC
    meter_values_interval_sec: float = METER_PERIOD_SEC
    reconnect_delay_sec: float = RECONNECT_DELAY_SEC
    call_timeout_sec: float = CALL_TIMEOUT_SEC
    log_messages: bool = not NO_REQUEST_LOGGING

    # two per-tick energy steps in Wh, the larger drawn with the given probability
    # 23.3 Wh per 20 s tick on average, roughly 4.2 kW
    energy_increments: Tuple[int, int] = (20, 30)
    large_increment_probability: float = 1 / 3
    soc_sample: str = "50"
