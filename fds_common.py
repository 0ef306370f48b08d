import os
import time
import random
import string
import socket
import struct
import logging
import fcntl
import ipaddress
from typing import Iterable, Iterator

logger = logging.getLogger(__name__)

# ----------------------------
# Errors
# ----------------------------

class FdsError(Exception):
    """Base class for everything the tool reports as a failure."""

class NetworkError(FdsError):
    """Connection or listener failure."""

class StorageError(FdsError):
    """Filesystem read, write or create failure."""

class ConfigError(FdsError):
    """Invalid compiled-in configuration (bad CIDR literal)."""

# ----------------------------
# Random names
# ----------------------------

LETTERS = string.ascii_lowercase + string.ascii_uppercase
SEGMENT_LENGTH = 40

def random_names(length: int = SEGMENT_LENGTH, alphabet: str = LETTERS) -> Iterator[str]:
    """
    Yield random fixed-length strings forever.
    Seeded from the clock; fine for collision avoidance, not for secrets.
    """
    rng = random.Random(time.time_ns())
    while True:
        yield "".join(rng.choice(alphabet) for _ in range(length))

# ----------------------------
# Private address discovery
# ----------------------------

DEFAULT_PRIVATE_CIDRS = (
    "10.0.0.0/8",      # RFC1918
    "172.16.0.0/12",   # RFC1918
    "192.168.0.0/16",  # RFC1918
    "169.254.0.0/16",  # RFC3927 link-local
)

FALLBACK_IP = "0.0.0.0"

def parse_private_blocks(cidrs: Iterable[str] = DEFAULT_PRIVATE_CIDRS) -> tuple[ipaddress.IPv4Network, ...]:
    blocks = []
    for cidr in cidrs:
        try:
            blocks.append(ipaddress.IPv4Network(cidr))
        except ValueError as e:
            raise ConfigError(f"parse error on {cidr!r}: {e}") from e
    return tuple(blocks)

def is_private_ip(ip: str, blocks: tuple[ipaddress.IPv4Network, ...]) -> bool:
    try:
        addr = ipaddress.IPv4Address(ip)
    except ValueError:
        return False
    return any(addr in block for block in blocks)

def _get_iface_ipv4_linux(ifname: str) -> str | None:
    """Return the IPv4 address for an interface name on Linux, or None if unavailable."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        ifreq = struct.pack("256s", ifname.encode("utf-8")[:15])
        res = fcntl.ioctl(s.fileno(), 0x8915, ifreq)  # SIOCGIFADDR
        return socket.inet_ntoa(res[20:24])
    except OSError:
        # interface without an IPv4 address
        return None
    finally:
        s.close()

def interface_addresses() -> list[str]:
    """IPv4 addresses of the local interfaces, then of the host name."""
    out: list[str] = []
    try:
        for ifname in sorted(os.listdir("/sys/class/net")):
            ip = _get_iface_ipv4_linux(ifname)
            if ip and ip not in out:
                out.append(ip)
    except OSError as e:
        logger.debug("Cannot enumerate /sys/class/net: %s", e)

    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError as e:
        logger.debug("Cannot resolve host name: %s", e)
        infos = []
    for info in infos:
        ip = info[4][0]
        if ip not in out:
            out.append(ip)
    return out

def private_ip(blocks: tuple[ipaddress.IPv4Network, ...], addresses: Iterable[str] | None = None) -> str:
    """First local address inside one of `blocks`, else FALLBACK_IP."""
    if addresses is None:
        addresses = interface_addresses()
    for ip in addresses:
        if is_private_ip(ip, blocks):
            return ip
    logger.debug("No private address found, using %s", FALLBACK_IP)
    return FALLBACK_IP
