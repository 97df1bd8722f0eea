from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class PortState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    TIMEOUT = "timeout"
    ERROR = "error"

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one connect attempt against one (ip, port)"""
    ip: str
    port: int
    state: PortState
    banner: Optional[str] = None

    def __post_init__(self):
        if self.banner is not None and self.state is not PortState.OPEN:
            raise ValueError(f"{self.ip}:{self.port} is {self.state}, only open ports carry a banner")

    def to_dict(self) -> Dict:
        return {
            "ip": self.ip,
            "port": self.port,
            "state": self.state.value,
            "banner": self.banner,
        }


@dataclass
class ScanReport:
    """
    Everything one scheduler run produced.

    results    - every outcome, in the order it was collected
    open_ports - (ip, port) of open outcomes, same order
    """
    total: int
    results: List[ScanResult] = field(default_factory=list)
    open_ports: List[Tuple[str, int]] = field(default_factory=list)
    completed: int = 0
    duration: float = 0.0
    max_in_flight: int = 0

    def add(self, result: ScanResult) -> None:
        self.results.append(result)
        self.completed += 1
        if result.state is PortState.OPEN:
            self.open_ports.append((result.ip, result.port))

    def counts(self) -> Dict[PortState, int]:
        tally = Counter(r.state for r in self.results)
        return {state: tally.get(state, 0) for state in PortState}
