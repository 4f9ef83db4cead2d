"""Configuration module for zeroscaler.

This module handles the configuration of zeroscaler through environment variables.
"""
import math
import os
import re

from pydantic import BaseModel, Field, field_validator

# Units accepted in Go-style duration strings, expressed in seconds
_DURATION_UNITS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 0.001,
    "us": 0.000001,
    "µs": 0.000001,
    "ns": 0.000000001,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(h|ms|m|s|us|µs|ns)")

# Environment variable backing each configuration field
ENV_VARS = {
    "listen_addr": "ZEROSCALER_LISTEN_ADDR",
    "statefulset_name": "ZEROSCALER_STATEFULSET_NAME",
    "namespace": "ZEROSCALER_NAMESPACE",
    "headless_service_name": "ZEROSCALER_HEADLESS_SERVICE_NAME",
    "target_port": "ZEROSCALER_TARGET_PORT",
    "dns_suffix": "ZEROSCALER_DNS_SUFFIX",
    "idle_timeout": "ZEROSCALER_IDLE_TIMEOUT",
    "ready_timeout": "ZEROSCALER_READY_TIMEOUT",
    "dial_timeout": "ZEROSCALER_DIAL_TIMEOUT",
    "shutdown_timeout": "ZEROSCALER_SHUTDOWN_TIMEOUT",
    "kubeconfig": "ZEROSCALER_KUBECONFIG",
}

# Names used by the earlier buildkitd autoscaler deployments, read when the ZEROSCALER_ variable is unset
LEGACY_ENV_VARS = {
    "listen_addr": "PROXY_LISTEN_ADDR",
    "statefulset_name": "BUILDKITD_STATEFULSET_NAME",
    "namespace": "BUILDKITD_STATEFULSET_NAMESPACE",
    "headless_service_name": "BUILDKITD_HEADLESS_SERVICE_NAME",
    "target_port": "BUILDKITD_TARGET_PORT",
    "idle_timeout": "SCALE_DOWN_IDLE_TIMEOUT",
    "kubeconfig": "KUBECONFIG_PATH",
}


def parse_duration(value: str | int | float) -> float:
    """Parse a duration into seconds.

    Accepts Go-style duration strings such as "2m0s", "1h30m" or "500ms", and plain
    numbers which are read as seconds.

    Args:
        value: The duration to parse.

    Returns:
        The duration in seconds.

    Raises:
        ValueError: If the value is not a valid, finite, non-negative duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, int | float):
        seconds = float(value)
    else:
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            seconds = 0.0
            position = 0
            for match in _DURATION_PART.finditer(text):
                if match.start() != position:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                position = match.end()
            if not text or position != len(text):
                raise ValueError(f"invalid duration {value!r}")
    if not math.isfinite(seconds):
        raise ValueError(f"invalid duration {value!r}: must be finite")
    if seconds < 0:
        raise ValueError(f"invalid duration {value!r}: must not be negative")
    return seconds


def format_duration(seconds: float) -> str:
    """Format seconds as a short duration string, e.g. 120.0 -> '2m0s'."""
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    secs_text = f"{secs:g}s"
    if hours:
        return f"{hours}h{minutes}m{secs_text}"
    if minutes:
        return f"{minutes}m{secs_text}"
    return secs_text


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split a listen address into host and port.

    Accepts ":8080" (all interfaces), "127.0.0.1:8080" and "[::1]:8080".

    Args:
        address: The address to parse.

    Returns:
        A (host, port) tuple. The host is empty when listening on all interfaces.

    Raises:
        ValueError: If the address has no valid port.
    """
    host, sep, port_str = address.strip().rpartition(":")
    if not sep:
        raise ValueError(f"Listen address must be in format [host]:port, got {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"Invalid port in listen address {address!r}")
    if not 0 <= port < 65536:
        raise ValueError(f"Port out of range in listen address {address!r}")
    return host, port


def format_address(host: str, port: int) -> str:
    """Join a host and port, bracketing IPv6 hosts, e.g. ('::1', 80) -> '[::1]:80'."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class AutoscalerConfig(BaseModel):
    """Configuration class for zeroscaler.

    Attributes:
        listen_addr: Address the proxy listens on (":8080", "host:port" or "[v6]:port").
        statefulset_name: Name of the StatefulSet to scale between zero and one replica.
        namespace: Namespace of the StatefulSet and its headless service.
        headless_service_name: Headless service giving the StatefulSet pods stable DNS names.
        target_port: Port on the backend pod to proxy to.
        dns_suffix: Optional suffix appended to the backend host, e.g. "svc.cluster.local".
        idle_timeout: Seconds without connections before scaling down to zero.
        ready_timeout: Seconds to wait for the StatefulSet to become ready after scaling up.
        dial_timeout: Seconds allowed for connecting to the backend pod.
        shutdown_timeout: Seconds to wait for active connections on shutdown.
        kubeconfig: Optional kubeconfig path, used when not running in a cluster.
    """
    listen_addr: str = Field(default=":8080")
    statefulset_name: str = Field(default="buildkitd")
    namespace: str = Field(default="default")
    headless_service_name: str = Field(default="buildkitd-headless")
    target_port: int = Field(default=8372)
    dns_suffix: str | None = Field(default=None)
    idle_timeout: float = Field(default=120.0)
    ready_timeout: float = Field(default=300.0)
    dial_timeout: float = Field(default=10.0)
    shutdown_timeout: float = Field(default=25.0)
    kubeconfig: str | None = Field(default=None)

    @field_validator("idle_timeout", "ready_timeout", "dial_timeout", "shutdown_timeout", mode="before")
    def validate_duration(cls, v):
        """Accept Go-style duration strings as well as seconds"""
        return parse_duration(v)

    @field_validator("dial_timeout")
    def validate_dial_timeout(cls, v):
        """Validate that the dial timeout is positive"""
        if v <= 0:
            raise ValueError("Dial timeout must be greater than zero")
        return v

    @field_validator("target_port")
    def validate_port(cls, v):
        """Validate that the port is a usable TCP port"""
        if not 0 < v < 65536:
            raise ValueError("Port must be in range 1-65535")
        return v

    @field_validator("statefulset_name", "namespace", "headless_service_name")
    def validate_name(cls, v):
        """Validate that Kubernetes names are not empty"""
        v = v.strip()
        if not v:
            raise ValueError("Name must not be empty")
        return v

    @field_validator("dns_suffix")
    def validate_dns_suffix(cls, v):
        """Normalize the DNS suffix, treating an empty value as unset"""
        if v is None:
            return None
        v = v.strip().strip(".")
        return v or None

    @field_validator("listen_addr")
    def validate_listen_addr(cls, v):
        """Validate the listen address format as [host]:port"""
        parse_listen_address(v)
        return v

    @property
    def backend_host(self) -> str:
        """DNS name of the first StatefulSet pod behind the headless service."""
        host = f"{self.statefulset_name}-0.{self.headless_service_name}.{self.namespace}"
        if self.dns_suffix:
            host = f"{host}.{self.dns_suffix}"
        return host

    @property
    def backend_address(self) -> tuple[str, int]:
        """Address of the backend pod the proxy dials."""
        return self.backend_host, self.target_port

    @classmethod
    def from_env(cls):
        """Create a config instance from environment variables.

        The earlier buildkitd autoscaler variable names are read as fallbacks.
        Unset or empty variables keep the field default.
        """
        values = {}
        for field_name, env_name in ENV_VARS.items():
            value = os.getenv(env_name)
            if not value and field_name in LEGACY_ENV_VARS:
                value = os.getenv(LEGACY_ENV_VARS[field_name])
            if value:
                values[field_name] = value
        return cls(**values)
