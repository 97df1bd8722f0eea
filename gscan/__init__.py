"""
gscan - asynchronous TCP connect scanner.

Expands a target (address, CIDR block or range) against a port range and
probes every pair under a concurrency cap and optional rate limit.
"""

from .errors import ScanError, InvalidTarget, InvalidPortRange, ConfigError
from .models import PortState, ScanResult, ScanReport
from .targets import AddressSequence, expand
from .config import PortRange, EngineConfig, ScanConfig
from .probe import probe_port
from .scheduler import ScanScheduler, scan

__version__ = "0.3.0"

__all__ = [
    "ScanError",
    "InvalidTarget",
    "InvalidPortRange",
    "ConfigError",
    "PortState",
    "ScanResult",
    "ScanReport",
    "AddressSequence",
    "expand",
    "PortRange",
    "EngineConfig",
    "ScanConfig",
    "probe_port",
    "ScanScheduler",
    "scan",
]
