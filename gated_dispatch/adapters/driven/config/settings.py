"""Configuration loading from environment variables and files."""

import json
import logging
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, field_validator

from gated_dispatch.ports.http import Method

__all__ = ["Settings", "load_settings"]

load_dotenv()

logger = logging.getLogger(__name__)
_http_url_adapter = TypeAdapter(HttpUrl)

_ALLOWED_METHODS = {m.value for m in Method}


class Settings(BaseModel):
    """Runtime configuration for the dispatcher.

    Attributes:
        poll_interval_sec: Seconds between gate re-checks (must be positive).
        retries: Poll ticks a request may wait for the gate.
        http_timeout_sec: Total timeout of a single HTTP call.
        gate_probe_endpoint: Optional handshake endpoint that opens the gate.
        requests_file_path: Path to JSON file with requests to dispatch.
        requests: Request descriptions (loaded from file).
    """

    poll_interval_sec: float = Field(default=1.0, gt=0, description="Seconds between gate polls.")
    retries: int = Field(default=5, ge=0, description="Poll ticks a request may wait.")
    http_timeout_sec: float = Field(default=10.0, gt=0, description="HTTP call timeout.")
    gate_probe_endpoint: str | None = Field(
        default=None,
        description=(
            "Optional HTTP endpoint probed as handshake before opening the gate. "
            "If not set, the gate opens immediately."
        ),
    )
    requests_file_path: str = Field(..., description="Path to JSON file containing requests")
    requests: list[dict[str, Any]] = Field(
        default_factory=list,
        description="List of request descriptions (populated from file).",
    )

    @field_validator("gate_probe_endpoint")
    @classmethod
    def validate_gate_probe_endpoint(cls, v: str | None) -> str | None:
        """Validate that the probe endpoint (if provided) is a valid HTTP(S) URL.

        Args:
            v: Probe endpoint URL to validate (can be None).

        Returns:
            The validated URL or None.

        Raises:
            ValueError: If URL is invalid or not http(s).
        """
        if v is None:
            return v
        try:
            url = _http_url_adapter.validate_python(v)
            if url.scheme not in ("http", "https"):
                raise ValueError("Only http:// and https:// endpoints allowed")
        except Exception as e:
            raise ValueError(f"Invalid gate probe endpoint: {e}") from e
        return v

    def load_requests(self) -> None:
        """Load and validate request descriptions from JSON file.

        Each entry is an object with a "url" and optionally "method"
        (GET by default), "params", "headers" and "retries".

        Raises:
            ValueError: If file not found, invalid JSON, wrong format, or empty.
        """
        try:
            with open(self.requests_file_path) as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ValueError(f"Requests file not found: {self.requests_file_path}") from e
        except json.JSONDecodeError as e:
            raise ValueError(f"Requests file contains invalid JSON: {self.requests_file_path}") from e

        if not isinstance(data, list):
            raise ValueError("Requests file must be a JSON array")
        if not data:
            raise ValueError("Requests file is empty")
        if not all(isinstance(x, dict) for x in data):
            raise ValueError("Each request must be a JSON object")

        for i, item in enumerate(data):
            if not isinstance(item.get("url"), str) or not item["url"]:
                raise ValueError(f"Request #{i} has no url")
            method = str(item.get("method", "GET")).upper()
            if method not in _ALLOWED_METHODS:
                raise ValueError(f"Request #{i} has unsupported method: {method}")
            headers = item.get("headers")
            if headers is not None and not isinstance(headers, dict):
                raise ValueError(f"Request #{i} headers must be a JSON object")
            item["method"] = method

        self.requests = data
        logger.debug(f"Loaded {len(data)} requests from {self.requests_file_path}")


def _read_number(name: str, cast: type, default: float) -> Any:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number (got: {raw})") from e
    if value < 0:
        raise RuntimeError(f"{name} must not be negative (got: {raw})")
    return value


def load_settings() -> Settings:
    """Load and validate settings from environment and files.

    Required environment variables:
    - REQUESTS_FILE_PATH: Path to JSON file with requests to dispatch.

    Optional:
    - DISPATCH_POLL_INTERVAL_SECONDS: Positive float, default 1.0.
    - DISPATCH_RETRIES: Non-negative integer, default 5.
    - HTTP_TIMEOUT_SECONDS: Positive float, default 10.
    - GATE_PROBE_ENDPOINT: URL to probe before opening the gate.

    Returns:
        Validated Settings object.

    Raises:
        RuntimeError: If required env vars missing or invalid.
        ValueError: If configuration is invalid.
    """
    try:
        requests_path = os.environ["REQUESTS_FILE_PATH"]
    except KeyError as e:
        raise RuntimeError(f"Missing required environment variable: {e.args[0]}") from e

    poll_interval_sec = _read_number("DISPATCH_POLL_INTERVAL_SECONDS", float, 1.0)
    if poll_interval_sec == 0:
        raise RuntimeError("DISPATCH_POLL_INTERVAL_SECONDS must be positive")
    retries = _read_number("DISPATCH_RETRIES", int, 5)
    http_timeout_sec = _read_number("HTTP_TIMEOUT_SECONDS", float, 10.0)
    if http_timeout_sec == 0:
        raise RuntimeError("HTTP_TIMEOUT_SECONDS must be positive")

    settings = Settings(
        poll_interval_sec=poll_interval_sec,
        retries=retries,
        http_timeout_sec=http_timeout_sec,
        gate_probe_endpoint=os.getenv("GATE_PROBE_ENDPOINT") or None,
        requests_file_path=requests_path,
    )

    # Load and validate requests file
    settings.load_requests()

    logger.info(
        f"Dispatcher configured: poll={settings.poll_interval_sec}s, "
        f"retries={settings.retries}, "
        f"timeout={settings.http_timeout_sec}s, "
        f"requests={len(settings.requests)}, "
        f"gate_probe={settings.gate_probe_endpoint or '<disabled>'}"
    )

    return settings
