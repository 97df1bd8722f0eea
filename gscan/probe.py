import asyncio
import logging
from typing import Optional

from .models import PortState, ScanResult

logger = logging.getLogger(__name__)

# Single read, never more than this many bytes of banner
BANNER_SIZE = 64


async def _read_banner(reader: asyncio.StreamReader, timeout: float) -> Optional[str]:
    try:
        data = await asyncio.wait_for(reader.read(BANNER_SIZE), timeout=timeout)
    except asyncio.TimeoutError:
        return None
    except OSError as e:
        logger.debug("Banner read failed: %s", e)
        return None

    if not data:
        return None
    return data.decode('utf-8', errors='replace')


async def probe_port(address: str, port: int, timeout: float, capture_banner: bool = False) -> ScanResult:
    """
    One TCP connect attempt against address:port, bounded by timeout seconds.

    open    - connection established
    closed  - connection actively refused
    error   - any other connect failure (unreachable, reset, ...)
    timeout - neither happened before the deadline

    With capture_banner, an open connection gets one bounded read of up to
    BANNER_SIZE bytes. Whatever happens to that read, the port stays open.
    """
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.debug("[%s:%s] Timeout", address, port)
        return ScanResult(address, port, PortState.TIMEOUT)
    except ConnectionRefusedError:
        return ScanResult(address, port, PortState.CLOSED)
    except OSError as e:
        logger.debug("[%s:%s] Connection error: %s", address, port, e)
        return ScanResult(address, port, PortState.ERROR)

    banner = None
    try:
        if capture_banner:
            banner = await _read_banner(reader, timeout)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    return ScanResult(address, port, PortState.OPEN, banner)
