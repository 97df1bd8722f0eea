"""
Target expansion.

Turns a target string into an ordered sequence of addresses:
    10.0.0.1                  -> one address
    10.0.0.0/30               -> the whole block, network and broadcast included
    10.0.0.1-10.0.0.3         -> inclusive range
IPv6 forms are accepted only when use_ipv6 is set, IPv4 forms only when it is not.
"""
import ipaddress
from typing import Iterator, Union

from .errors import InvalidTarget

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# Largest target the CLI will scan: the whole IPv4 space, an IPv6 /96
MAX_SCAN_ADDRESSES = 2 ** 32


class AddressSequence:
    """
    Lazy run of consecutive addresses.

    Stores only the first address and the count, so even an IPv6 /64 costs
    nothing until it is iterated.
    """

    def __init__(self, first: Address, count: int):
        if count < 1:
            raise ValueError("AddressSequence needs at least one address")
        self.first = first
        self.count = count

    @property
    def version(self) -> int:
        return self.first.version

    @property
    def last(self) -> Address:
        return self.first + (self.count - 1)

    # len() overflows above sys.maxsize (IPv6 /64 and wider), use .count for totals
    def __len__(self) -> int:
        return self.count

    def __iter__(self) -> Iterator[Address]:
        start = int(self.first)
        cls = type(self.first)
        for offset in range(self.count):
            yield cls(start + offset)

    def __getitem__(self, index: int) -> Address:
        if index < 0:
            index += self.count
        if not 0 <= index < self.count:
            raise IndexError("address index out of range")
        return self.first + index

    def __eq__(self, other):
        if not isinstance(other, AddressSequence):
            return NotImplemented
        return self.first == other.first and self.count == other.count

    def __hash__(self):
        return hash((self.first, self.count))

    def __repr__(self):
        if self.count == 1:
            return f"AddressSequence({self.first})"
        return f"AddressSequence({self.first}..{self.last}, {self.count} addresses)"


def address_count(addresses) -> int:
    """Number of addresses, without len() for AddressSequence"""
    if isinstance(addresses, AddressSequence):
        return addresses.count
    return len(addresses)


def _parse_address(text: str, use_ipv6: bool, spec: str) -> Address:
    try:
        address = ipaddress.ip_address(text.strip())
    except ValueError:
        raise InvalidTarget(f"'{spec}': '{text.strip()}' is not an IP address") from None

    wanted = 6 if use_ipv6 else 4
    if address.version != wanted:
        hint = "" if use_ipv6 else " (use --ipv6 for IPv6 targets)"
        raise InvalidTarget(f"'{spec}': {address} is not an IPv{wanted} address{hint}")
    return address


def _expand_range(spec: str, use_ipv6: bool) -> AddressSequence:
    start_text, _, end_text = spec.partition('-')
    start = _parse_address(start_text, use_ipv6, spec)
    end = _parse_address(end_text, use_ipv6, spec)
    if int(end) < int(start):
        raise InvalidTarget(f"'{spec}': range end {end} is below range start {start}")
    return AddressSequence(start, int(end) - int(start) + 1)


def _expand_cidr(spec: str, use_ipv6: bool) -> AddressSequence:
    # strict=False: host bits are masked, 10.0.0.1/30 is the 10.0.0.0/30 block
    try:
        network = ipaddress.ip_network(spec, strict=False)
    except ValueError:
        raise InvalidTarget(f"'{spec}' is not a valid CIDR block") from None

    wanted = 6 if use_ipv6 else 4
    if network.version != wanted:
        raise InvalidTarget(f"'{spec}' is not an IPv{wanted} CIDR block")
    return AddressSequence(network.network_address, network.num_addresses)


def expand(spec: str, use_ipv6: bool = False) -> AddressSequence:
    """
    Parses a target string into an AddressSequence.
    Raises InvalidTarget for anything that is not an address, CIDR block or
    ascending range of the requested family.
    """
    if not isinstance(spec, str) or not spec.strip():
        raise InvalidTarget("Empty target")
    spec = spec.strip()

    if '-' in spec:
        return _expand_range(spec, use_ipv6)
    if '/' in spec:
        return _expand_cidr(spec, use_ipv6)
    return AddressSequence(_parse_address(spec, use_ipv6, spec), 1)
