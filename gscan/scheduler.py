import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Iterable, Optional, Sized, Tuple

from .config import EngineConfig, PortRange
from .models import PortState, ScanReport, ScanResult
from .probe import probe_port
from .targets import address_count
from .utils import RateLimiter

logger = logging.getLogger(__name__)

ProbeFunc = Callable[[str, int, float, bool], Awaitable[ScanResult]]
ProgressCallback = Callable[[int, int], None]


class ScanScheduler:
    """
    Drives one scan: every address x every port, one probe each.

    Submission is address-major, port-minor. At most `concurrency` probes are
    outstanding at any instant; once the cap is reached nothing new is
    submitted until at least one outstanding probe has been collected.
    Outcomes are collected in completion order.

    One instance per run; all run state lives on the ScanReport that run()
    returns.
    """

    def __init__(
        self,
        config: EngineConfig,
        probe: ProbeFunc = probe_port,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.config = config
        self.probe = probe
        self.on_progress = on_progress

    async def _run_probe(self, ip: str, port: int) -> ScanResult:
        return await self.probe(ip, port, self.config.timeout, self.config.banner)

    def _collect(self, task: asyncio.Task, target: Tuple[str, int], report: ScanReport) -> None:
        ip, port = target
        try:
            result = task.result()
        except Exception:
            # The probe itself blew up (not a network condition), keep the run going
            logger.exception("Probe task for %s:%s failed", ip, port)
            result = ScanResult(ip, port, PortState.ERROR)

        report.add(result)
        if self.on_progress:
            self.on_progress(report.completed, report.total)

    async def _drain(self, in_flight: Dict[asyncio.Task, Tuple[str, int]], report: ScanReport) -> None:
        """Waits for at least one outstanding probe and collects all that are done"""
        done, _ = await asyncio.wait(in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            self._collect(task, in_flight.pop(task), report)

    async def run(self, addresses: Iterable, port_range: PortRange) -> ScanReport:
        """
        Probes every (address, port) pair exactly once and returns the report.
        Network failures land in the report as closed/timeout/error outcomes.
        """
        if not isinstance(addresses, Sized):
            addresses = list(addresses)

        count = address_count(addresses)
        report = ScanReport(total=count * port_range.count)
        limiter = RateLimiter(self.config.rate)
        in_flight: Dict[asyncio.Task, Tuple[str, int]] = {}
        start_time = time.monotonic()

        logger.info(
            "Scanning %d address(es) x %d port(s), concurrency %d, timeout %dms, rate %s",
            count, port_range.count, self.config.concurrency,
            self.config.timeout_ms, self.config.rate or "unlimited",
        )

        try:
            for address in addresses:
                ip = str(address)
                for port in port_range.ports():
                    await limiter.acquire()
                    task = asyncio.create_task(self._run_probe(ip, port))
                    in_flight[task] = (ip, port)
                    report.max_in_flight = max(report.max_in_flight, len(in_flight))

                    while len(in_flight) >= self.config.concurrency:
                        await self._drain(in_flight, report)

            while in_flight:
                await self._drain(in_flight, report)
        finally:
            # Only reached with tasks left when the run itself is cancelled
            for task in in_flight:
                task.cancel()

        report.duration = time.monotonic() - start_time
        logger.info(
            "Scan finished in %.2fs: %d outcome(s), %d open",
            report.duration, report.completed, len(report.open_ports),
        )
        return report


def scan(
    addresses: Iterable,
    port_range: PortRange,
    config: Optional[EngineConfig] = None,
    probe: ProbeFunc = probe_port,
    on_progress: Optional[ProgressCallback] = None,
) -> ScanReport:
    """Blocking convenience wrapper: runs a fresh scheduler on a new event loop."""
    scheduler = ScanScheduler(config or EngineConfig(), probe=probe, on_progress=on_progress)
    return asyncio.run(scheduler.run(addresses, port_range))
