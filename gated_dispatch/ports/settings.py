"""Settings port definition (DTO)."""

from dataclasses import dataclass
from typing import Any

__all__ = ["SettingsPort"]


@dataclass
class SettingsPort:
    """Runtime settings for the dispatcher and the entrypoint.

    Decouples core from concrete configuration sources, enabling
    easy testing and implementation swapping.

    Attributes:
        poll_interval_sec: Seconds between gate re-checks for queued requests.
        retries: Default number of poll ticks a request may wait for the gate.
        http_timeout_sec: Total timeout of a single HTTP call.
        requests: Request descriptions to dispatch ({method, url, params, headers}).
        gate_probe_endpoint: Optional URL whose successful probe opens the gate.
    """

    poll_interval_sec: float
    retries: int
    http_timeout_sec: float
    requests: list[dict[str, Any]]
    gate_probe_endpoint: str | None = None
