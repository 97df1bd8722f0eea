"""
Unit tests for the probe unit and the scan scheduler.
Run with: pytest tests/test_engine.py -v
"""
import asyncio
import socket

import pytest

from gscan.config import EngineConfig, PortRange
from gscan.models import PortState, ScanResult
from gscan.probe import BANNER_SIZE, probe_port
from gscan.scheduler import ScanScheduler, scan
from gscan.targets import expand
from gscan.utils import RateLimiter


def free_port():
    """A loopback port with nothing listening on it"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def start_server(payload=b""):
    async def handle(reader, writer):
        if payload:
            writer.write(payload)
            await writer.drain()
        await asyncio.sleep(0.5)
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


class ProbeStub:
    """Instrumented probe: records submissions and concurrent activity"""

    def __init__(self, delay=0.01, open_ports=(), fail_ports=()):
        self.delay = delay
        self.open_ports = set(open_ports)
        self.fail_ports = set(fail_ports)
        self.active = 0
        self.peak = 0
        self.calls = []
        self.started = []

    async def __call__(self, address, port, timeout, capture_banner):
        loop = asyncio.get_running_loop()
        self.calls.append((address, port))
        self.started.append(loop.time())
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            if port in self.fail_ports:
                raise RuntimeError("probe machinery broke")
            if port in self.open_ports:
                banner = "hello" if capture_banner else None
                return ScanResult(address, port, PortState.OPEN, banner)
            return ScanResult(address, port, PortState.CLOSED)
        finally:
            self.active -= 1


class TestProbe:
    """Test connect classification against loopback"""

    @pytest.mark.asyncio
    async def test_open_port(self):
        """Listening port is open, no banner unless asked"""
        server, port = await start_server(b"SSH-2.0-Test\r\n")
        async with server:
            result = await probe_port("127.0.0.1", port, 1.0, capture_banner=False)
        assert result.state is PortState.OPEN
        assert result.banner is None

    @pytest.mark.asyncio
    async def test_banner_capture(self):
        """Banner read on open port"""
        server, port = await start_server(b"SSH-2.0-Test\r\n")
        async with server:
            result = await probe_port("127.0.0.1", port, 1.0, capture_banner=True)
        assert result.state is PortState.OPEN
        assert result.banner == "SSH-2.0-Test\r\n"

    @pytest.mark.asyncio
    async def test_banner_bounded(self):
        """Banner never exceeds one fixed-size read"""
        server, port = await start_server(b"A" * 500)
        async with server:
            result = await probe_port("127.0.0.1", port, 1.0, capture_banner=True)
        assert result.banner is not None
        assert 0 < len(result.banner) <= BANNER_SIZE

    @pytest.mark.asyncio
    async def test_banner_invalid_utf8(self):
        """Invalid bytes are replaced, not fatal"""
        server, port = await start_server(b"\xff\xfeOK")
        async with server:
            result = await probe_port("127.0.0.1", port, 1.0, capture_banner=True)
        assert result.state is PortState.OPEN
        assert "�" in result.banner
        assert result.banner.endswith("OK")

    @pytest.mark.asyncio
    async def test_silent_service_no_banner(self):
        """No data before timeout leaves banner absent, port still open"""
        server, port = await start_server()
        async with server:
            result = await probe_port("127.0.0.1", port, 0.1, capture_banner=True)
        assert result.state is PortState.OPEN
        assert result.banner is None

    @pytest.mark.asyncio
    async def test_refused_is_closed(self):
        """Connection refused maps to closed"""
        result = await probe_port("127.0.0.1", free_port(), 1.0)
        assert result.state is PortState.CLOSED
        assert result.banner is None

    @pytest.mark.asyncio
    async def test_timeout(self, monkeypatch):
        """Connect that never finishes is a timeout"""
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        monkeypatch.setattr(asyncio, "open_connection", hang)
        result = await probe_port("10.0.0.1", 80, 0.05)
        assert result.state is PortState.TIMEOUT

    @pytest.mark.asyncio
    async def test_other_oserror_is_error(self, monkeypatch):
        """Unreachable and friends map to error"""
        async def unreachable(*args, **kwargs):
            raise OSError(113, "No route to host")

        monkeypatch.setattr(asyncio, "open_connection", unreachable)
        result = await probe_port("10.0.0.1", 80, 1.0)
        assert result.state is PortState.ERROR
        assert result.ip == "10.0.0.1"
        assert result.port == 80


class TestRateLimiter:
    """Test submission spacing"""

    @pytest.mark.asyncio
    async def test_unlimited(self):
        """rate=0 never waits"""
        limiter = RateLimiter(0)
        loop = asyncio.get_running_loop()
        start = loop.time()
        for _ in range(100):
            await limiter.acquire()
        assert loop.time() - start < 0.5

    @pytest.mark.asyncio
    async def test_spacing(self):
        """Consecutive acquisitions are at least 1/rate apart"""
        limiter = RateLimiter(20)
        loop = asyncio.get_running_loop()
        stamps = []
        for _ in range(5):
            await limiter.acquire()
            stamps.append(loop.time())
        gaps = [b - a for a, b in zip(stamps, stamps[1:])]
        # stamps are taken just after acquire returns, allow scheduling jitter
        assert all(g >= 0.049 for g in gaps)

    def test_negative_rate(self):
        """Negative rate is rejected"""
        with pytest.raises(ValueError):
            RateLimiter(-1)


class TestScheduler:
    """Test the scan scheduler with instrumented probes"""

    @pytest.mark.asyncio
    async def test_one_outcome_per_pair(self):
        """|outcomes| = |addresses| x |ports|, nothing lost or duplicated"""
        stub = ProbeStub(delay=0.001)
        addresses = expand("10.0.0.0/29")
        ports = PortRange.build(20, 29)
        report = await ScanScheduler(EngineConfig(concurrency=7), probe=stub).run(addresses, ports)

        assert report.total == 80
        assert report.completed == 80
        pairs = [(r.ip, r.port) for r in report.results]
        assert len(pairs) == len(set(pairs)) == 80
        assert set(pairs) == {(str(a), p) for a in addresses for p in ports.ports()}

    @pytest.mark.asyncio
    async def test_submission_order(self):
        """Address-major, port-minor submission"""
        stub = ProbeStub(delay=0)
        addresses = expand("10.0.0.1-10.0.0.2")
        await ScanScheduler(EngineConfig(concurrency=3), probe=stub).run(addresses, PortRange.build(1, 3))
        assert stub.calls == [
            ("10.0.0.1", 1), ("10.0.0.1", 2), ("10.0.0.1", 3),
            ("10.0.0.2", 1), ("10.0.0.2", 2), ("10.0.0.2", 3),
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cap", [1, 2, 5, 16])
    async def test_concurrency_cap(self, cap):
        """In-flight probes never exceed the cap"""
        stub = ProbeStub(delay=0.005)
        report = await ScanScheduler(EngineConfig(concurrency=cap), probe=stub).run(
            expand("10.0.0.0/30"), PortRange.build(1, 10)
        )
        assert stub.peak <= cap
        assert report.max_in_flight <= cap
        assert report.completed == 40

    @pytest.mark.asyncio
    async def test_concurrency_one_is_sequential(self):
        """Range x ports with concurrency 1: six outcomes, strictly one at a time"""
        stub = ProbeStub(delay=0.005)
        report = await ScanScheduler(EngineConfig(concurrency=1), probe=stub).run(
            expand("10.0.0.1-10.0.0.3"), PortRange.build(22, 23)
        )
        assert report.completed == 6
        assert stub.peak == 1
        # sequential means completion order is submission order
        assert [(r.ip, r.port) for r in report.results] == stub.calls

    @pytest.mark.asyncio
    async def test_rate_limit_spacing(self):
        """rate=10 spaces 20 submissions at least 100ms apart"""
        stub = ProbeStub(delay=0)
        report = await ScanScheduler(EngineConfig(concurrency=64, rate=10), probe=stub).run(
            expand("10.0.0.1-10.0.0.2"), PortRange.build(1, 10)
        )
        assert report.completed == 20
        gaps = [b - a for a, b in zip(stub.started, stub.started[1:])]
        assert len(gaps) == 19
        # probe start lags submission by a loop iteration, allow that jitter
        assert all(g >= 0.099 for g in gaps)

    @pytest.mark.asyncio
    async def test_open_ports_summary(self):
        """Open outcomes are also listed in the summary"""
        stub = ProbeStub(open_ports={22, 80})
        report = await ScanScheduler(EngineConfig(concurrency=4), probe=stub).run(
            expand("10.0.0.1"), PortRange.build(20, 90)
        )
        assert sorted(report.open_ports) == [("10.0.0.1", 22), ("10.0.0.1", 80)]
        assert report.counts()[PortState.OPEN] == 2

    @pytest.mark.asyncio
    async def test_banner_flag_forwarded(self):
        """Banner flag and timeout reach the probe"""
        seen = []

        async def probe(address, port, timeout, capture_banner):
            seen.append((timeout, capture_banner))
            return ScanResult(address, port, PortState.CLOSED)

        config = EngineConfig(timeout_ms=350, banner=True)
        await ScanScheduler(config, probe=probe).run(expand("10.0.0.1"), PortRange.build(1, 1))
        assert seen == [(0.35, True)]

    @pytest.mark.asyncio
    async def test_no_banner_when_disabled(self):
        """Banner capture off: every outcome lacks a banner"""
        stub = ProbeStub(open_ports=set(range(1, 11)))
        report = await ScanScheduler(EngineConfig(banner=False), probe=stub).run(
            expand("10.0.0.1"), PortRange.build(1, 10)
        )
        assert all(r.banner is None for r in report.results)

    @pytest.mark.asyncio
    async def test_progress_callback(self):
        """Progress is monotonic and ends at (total, total)"""
        updates = []
        stub = ProbeStub(delay=0.001)
        await ScanScheduler(EngineConfig(concurrency=3), probe=stub, on_progress=lambda c, t: updates.append((c, t))).run(
            expand("10.0.0.0/31"), PortRange.build(1, 5)
        )
        assert [c for c, _ in updates] == list(range(1, 11))
        assert all(t == 10 for _, t in updates)

    @pytest.mark.asyncio
    async def test_internal_failure_becomes_error(self):
        """A probe that raises yields an error outcome, the run completes"""
        stub = ProbeStub(fail_ports={3})
        report = await ScanScheduler(EngineConfig(concurrency=2), probe=stub).run(
            expand("10.0.0.1"), PortRange.build(1, 5)
        )
        assert report.completed == 5
        failed = [r for r in report.results if r.port == 3]
        assert len(failed) == 1
        assert failed[0].state is PortState.ERROR

    @pytest.mark.asyncio
    async def test_fresh_state_per_run(self):
        """Two runs on one scheduler do not share results"""
        scheduler = ScanScheduler(EngineConfig(), probe=ProbeStub(delay=0))
        first = await scheduler.run(expand("10.0.0.1"), PortRange.build(1, 3))
        second = await scheduler.run(expand("10.0.0.1"), PortRange.build(1, 3))
        assert first.completed == second.completed == 3
        assert first.results is not second.results

    @pytest.mark.asyncio
    async def test_accepts_plain_iterables(self):
        """Any iterable of addresses works"""
        stub = ProbeStub(delay=0)
        report = await ScanScheduler(EngineConfig(), probe=stub).run(
            (a for a in ["10.0.0.1", "10.0.0.2"]), PortRange.build(1, 2)
        )
        assert report.total == 4
        assert report.completed == 4

    @pytest.mark.asyncio
    async def test_huge_ipv6_block_starts(self):
        """A /64 reports its full total and starts probing without overflowing"""
        updates = []
        stub = ProbeStub(delay=0)
        scheduler = ScanScheduler(EngineConfig(concurrency=4), probe=stub, on_progress=lambda c, t: updates.append((c, t)))
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                scheduler.run(expand("2001:db8::/64", use_ipv6=True), PortRange.build(1, 1)),
                timeout=0.2,
            )
        assert updates
        assert updates[0][1] == 2 ** 64
        assert stub.calls[0] == ("2001:db8::", 1)


class TestScanAgainstLoopback:
    """End to end: real probes against a loopback listener"""

    def test_scan_sync_wrapper(self):
        """scan() finds the listener and classifies refused ports as closed"""
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind(("127.0.0.1", 0))
        listener.listen(16)
        open_port = listener.getsockname()[1]
        closed_port = free_port()
        try:
            ports = PortRange.build(open_port, open_port)
            report = scan(expand("127.0.0.1"), ports, EngineConfig(timeout_ms=1000))
            assert report.open_ports == [("127.0.0.1", open_port)]

            report = scan(expand("127.0.0.1"), PortRange.build(closed_port, closed_port), EngineConfig(timeout_ms=1000))
            assert [r.state for r in report.results] == [PortState.CLOSED]
        finally:
            listener.close()

    def test_idempotent(self):
        """Same scan twice gives the same (ip, port, state) multiset"""
        closed = free_port()
        ports = PortRange.build(closed, closed)
        config = EngineConfig(timeout_ms=1000)
        first = scan(expand("127.0.0.1"), ports, config)
        second = scan(expand("127.0.0.1"), ports, config)
        key = lambda r: (r.ip, r.port, r.state)
        assert sorted(map(key, first.results)) == sorted(map(key, second.results))
