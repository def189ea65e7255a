from .config import ChargePointIdentity, SimulatorConfig
from .simulator import ChargerSimulator

__all__ = ["ChargePointIdentity", "ChargerSimulator", "SimulatorConfig"]
