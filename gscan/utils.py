import asyncio
from typing import Optional, Tuple


class RateLimiter:
    """
    Submission spacing: at most `rate` acquisitions per second, with at
    least 1/rate seconds between two consecutive ones.
    A rate of 0 means no limit. Bursts are not smoothed, there is no bucket.
    """
    def __init__(self, rate: int = 0):
        if rate < 0:
            raise ValueError("rate must be >= 0")
        self.rate = rate
        self.interval = 1.0 / rate if rate else 0.0
        self._last: Optional[float] = None

    async def acquire(self):
        if not self.interval:
            return

        loop = asyncio.get_running_loop()
        if self._last is not None:
            # loop timers may fire a hair early, keep sleeping until the gap really elapsed
            remaining = self._last + self.interval - loop.time()
            while remaining > 0:
                await asyncio.sleep(remaining)
                remaining = self._last + self.interval - loop.time()

        self._last = loop.time()


def parse_port_range(port_input: str) -> Tuple[int, int]:
    """
    Parses "80" or "20-1024" into (start, end).
    Bounds checking is left to PortRange.
    Example: "1000-1005" -> (1000, 1005)
    """
    text = port_input.strip()
    if not text:
        raise ValueError("empty port range")

    if '-' in text:
        start, _, end = text.partition('-')
        return int(start), int(end)

    port = int(text)
    return port, port
