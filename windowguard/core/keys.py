"""Client key derivation.

By default clients are identified by their IP address. IPv6 addresses are
collapsed to their network prefix because one subscriber is usually handed a
whole range (a /56 or /64) and could otherwise rotate through it to dodge the
limit.
"""

from __future__ import annotations

import ipaddress
from typing import TYPE_CHECKING, Any, Iterable

from starlette.requests import Request

from windowguard.utils.resolve import resolve_value

if TYPE_CHECKING:
    from windowguard.core.validations import Validations

DEFAULT_IPV6_SUBNET = 56

# Key used when the peer address is not available.
UNKNOWN_CLIENT = "unknown"


def ip_key_generator(ip: str, ipv6_subnet: int | bool = DEFAULT_IPV6_SUBNET) -> str:
    """Return the address itself for IPv4, or a CIDR subnet for IPv6.

    Custom key generators that fall back to the client address should return
    ``ip_key_generator(ip)`` rather than the bare address.

    Args:
        ip: Client address, usually the socket peer.
        ipv6_subnet: Prefix length (1-128) applied to IPv6 addresses, or False
            to use the full address.

    Returns:
        The key for the address. Values that are not IPv6 addresses are
        returned unchanged.

    Examples:
        >>> ip_key_generator("0123:4567:89ab:cdef:0123:4567:89ab:cdef", 64)
        '123:4567:89ab:cdef::/64'
        >>> ip_key_generator("1.2.3.4", 32)
        '1.2.3.4'
    """

    if not ipv6_subnet:
        return ip

    try:
        address = ipaddress.IPv6Address(ip.split("%", 1)[0])
    except ValueError:
        return ip

    network = ipaddress.IPv6Network((address, ipv6_subnet), strict=False)
    return f"{network.network_address.compressed}/{ipv6_subnet}"


def _parse_networks(trusted: Iterable[str]) -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    return [ipaddress.ip_network(entry, strict=False) for entry in trusted]


def _is_trusted(address: str, networks: list[ipaddress.IPv4Network | ipaddress.IPv6Network]) -> bool:
    try:
        parsed = ipaddress.ip_address(address)
    except ValueError:
        return False
    return any(parsed in network for network in networks)


def client_ip(request: Request, trust_proxy: bool | int | Iterable[str] = False) -> str | None:
    """Resolve the client address of a request.

    Args:
        request: Incoming request.
        trust_proxy: False to use the socket peer; True to trust the left-most
            X-Forwarded-For entry; an int to trust that many proxy hops; or an
            iterable of trusted proxy addresses/networks, in which case the
            right-most untrusted address is used.

    Returns:
        The client address, or None when the peer is unknown.
    """

    peer = request.client.host if request.client else None
    if trust_proxy is False:
        return peer

    forwarded = [
        part.strip()
        for part in request.headers.get("x-forwarded-for", "").split(",")
        if part.strip()
    ]
    if not forwarded:
        return peer

    if trust_proxy is True:
        return forwarded[0]

    chain = forwarded + ([peer] if peer else [])
    if isinstance(trust_proxy, int):
        index = len(chain) - 1 - trust_proxy
        return chain[max(index, 0)]

    networks = _parse_networks(trust_proxy)
    for address in reversed(chain):
        if not _is_trusted(address, networks):
            return address
    return chain[0]


class IpKeyGenerator:
    """Default key generator: the (subnet-masked) client address.

    Runs the address-related diagnostics on every call while they are active.
    """

    def __init__(
        self,
        *,
        ipv6_subnet: Any = DEFAULT_IPV6_SUBNET,
        trust_proxy: bool | int | Iterable[str] = False,
        validations: Validations,
    ) -> None:
        self.ipv6_subnet = ipv6_subnet
        self.trust_proxy = trust_proxy
        self._validations = validations

    async def __call__(self, request: Request) -> str:
        ip = client_ip(request, self.trust_proxy)

        self._validations.ip(ip)
        self._validations.trust_proxy(self.trust_proxy)
        self._validations.x_forwarded_for_header(request, self.trust_proxy)
        self._validations.forwarded_header(request)

        if ip is None:
            return UNKNOWN_CLIENT

        subnet: int | bool = DEFAULT_IPV6_SUBNET
        if ":" in ip:
            subnet = await resolve_value(self.ipv6_subnet, request)
            # Static values were already checked when the options were parsed.
            if callable(self.ipv6_subnet):
                self._validations.ipv6_subnet(subnet)

        return ip_key_generator(ip, subnet)
