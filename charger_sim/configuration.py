from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional

from .config import SimulatorConfig


@dataclass
class ConfigurationKey:
    key: str
    readonly: bool
    value: str


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class ConfigurationStore:
    """Ordered configuration keys exposed through Get/ChangeConfiguration.

    Keys are fixed at construction. Only values change afterwards.
    """

    def __init__(self, keys: Iterable[ConfigurationKey] = ()):
        self._keys: List[ConfigurationKey] = []
        for entry in keys:
            if self.get(entry.key) is not None:
                raise ValueError(f"duplicate configuration key {entry.key}")
            self._keys.append(ConfigurationKey(entry.key, entry.readonly, _stringify(entry.value)))

    @classmethod
    def defaults(cls, config: SimulatorConfig) -> "ConfigurationStore":
        return cls(
            [
                ConfigurationKey("HeartBeatInterval", False, _stringify(config.heartbeat_interval_sec)),
                ConfigurationKey("ResetRetries", False, "1"),
                ConfigurationKey("MeterValueSampleInterval", False, _stringify(config.meter_values_interval_sec)),
            ]
        )

    def get(self, key: str) -> Optional[ConfigurationKey]:
        for entry in self._keys:
            if entry.key == key:
                return entry
        return None

    def change(self, key: str, value: Any) -> bool:
        """Set the value of ``key``. Unknown keys are ignored and return False."""
        entry = self.get(key)
        if entry is None:
            return False
        entry.value = _stringify(value)
        return True

    def as_list(self) -> List[Dict[str, Any]]:
        return [asdict(entry) for entry in self._keys]

    def __iter__(self) -> Iterator[ConfigurationKey]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)
