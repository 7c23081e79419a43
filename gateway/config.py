from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .models import DeviceIdentity, RAK4630_IDENTITY, SerialConfig
from .sink.http import DEFAULT_SINK_URL, DEFAULT_TIMEOUT

BUS_BACKENDS = ("udev", "poll")


@dataclass
class DeviceConfig:
    vendor_id: int = RAK4630_IDENTITY.vendor_id
    product_id: int = RAK4630_IDENTITY.product_id

    @property
    def identity(self) -> DeviceIdentity:
        return DeviceIdentity(self.vendor_id, self.product_id)


@dataclass
class SinkConfig:
    url: str = DEFAULT_SINK_URL
    timeout: float = DEFAULT_TIMEOUT
    forward_error_codes: bool = True


@dataclass
class DispatchConfig:
    max_workers: Optional[int] = None  # None: one thread per frame
    queue_size: int = 0


@dataclass
class BusConfig:
    backend: str = "udev"  # udev | poll
    poll_interval: float = 1.0


@dataclass
class GatewayConfig:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    serial: SerialConfig = field(default_factory=SerialConfig)
    sink: SinkConfig = field(default_factory=SinkConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    bus: BusConfig = field(default_factory=BusConfig)

    def validate(self) -> None:
        # Raises ValueError for out-of-range ids
        DeviceIdentity(self.device.vendor_id, self.device.product_id)
        if self.bus.backend not in BUS_BACKENDS:
            raise ValueError(f"Unsupported bus backend '{self.bus.backend}' (expected one of {BUS_BACKENDS})")
        if self.bus.poll_interval <= 0:
            raise ValueError("bus.poll_interval must be positive")
        if self.dispatch.max_workers is not None and self.dispatch.max_workers < 1:
            raise ValueError("dispatch.max_workers must be a positive integer or null")
        if not self.serial.line_terminator:
            raise ValueError("serial.line_terminator may not be empty")
        if self.sink.timeout <= 0:
            raise ValueError("sink.timeout must be positive")


_SECTIONS = {
    "device": DeviceConfig,
    "serial": SerialConfig,
    "sink": SinkConfig,
    "dispatch": DispatchConfig,
    "bus": BusConfig,
}


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return data


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> GatewayConfig:
    """
    Build the gateway configuration from defaults, an optional JSON file and
    CLI-style overrides, in that order of precedence (last wins).

    Overrides are expressed as dotted `key=value` pairs, e.g.:
        ["sink.url=http://collector:8080/ingest", "bus.backend=poll", "device.product_id=0x8029"]

    Raises:
        ValueError: on unknown sections/keys or invalid values
    """
    data: Dict[str, Any] = _load_json(Path(path)) if path is not None else {}

    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)

    unknown = sorted(set(merged) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown config section(s): {', '.join(unknown)}")

    config = GatewayConfig()
    for section, cls in _SECTIONS.items():
        values = merged.get(section) or {}
        if not isinstance(values, dict):
            raise ValueError(f"Config section '{section}' must be an object")
        known = {f.name for f in fields(cls)}
        bad = sorted(set(values) - known)
        if bad:
            raise ValueError(f"Unknown key(s) in '{section}': {', '.join(bad)}")
        if section == "serial" and "line_terminator" in values:
            values = {**values, "line_terminator": _to_bytes(values["line_terminator"])}
        setattr(config, section, replace(getattr(config, section), **values))

    config.validate()
    return config


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if not isinstance(value, str):
        raise ValueError("serial.line_terminator must be a string")
    # Accept escaped forms such as "\\r\\n" from the command line
    return value.encode("utf-8").decode("unicode_escape").encode("latin-1")


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key or "." not in key:
        raise ValueError(f"Override key '{key}' must be of the form section.key")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    if lowered in {"null", "none"}:
        return None
    try:
        if lowered.startswith("0x"):
            return int(raw, 16)
        if "." in raw or "e" in lowered:
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
