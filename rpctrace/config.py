"""Configuration and endpoint parsing for rpctrace."""

import os
import re

from rpctrace.types import Endpoint

PROTOCOL_ENV_VAR = "RPCTRACE_PROTOCOL"


def parse_endpoint(url: str) -> Endpoint:
    """
    Parse an RPC endpoint URL.

    Format: <protocol>://<host>:<port>[/<path>]

    Args:
        url: The endpoint URL to parse

    Returns:
        Endpoint with extracted components

    Raises:
        ValueError: If URL format is invalid

    Example:
        >>> parse_endpoint('custom://10.0.0.1:20880')
        Endpoint(protocol='custom', host='10.0.0.1', port=20880)
    """
    if not url:
        raise ValueError("Endpoint URL is required")

    pattern = r"^([a-zA-Z][a-zA-Z0-9+.\-]*):\/\/(\[[^\]]+\]|[^:\/]+):(\d+)(\/.*)?$"
    match = re.match(pattern, url)

    if not match:
        raise ValueError(
            f"Invalid endpoint format. Expected: <protocol>://<host>:<port>, got: {url}"
        )

    protocol, host, port, _ = match.groups()

    port_number = int(port)
    if not 0 < port_number < 65536:
        raise ValueError(f"Endpoint port out of range: {port_number}")

    return Endpoint(protocol=protocol, host=host, port=port_number)


def is_valid_endpoint(url: str) -> bool:
    """Check if endpoint URL format is valid without throwing."""
    try:
        parse_endpoint(url)
        return True
    except ValueError:
        return False


def default_protocol() -> str | None:
    """Protocol name configured through the environment, if any."""
    value = os.environ.get(PROTOCOL_ENV_VAR, "").strip()
    return value or None
