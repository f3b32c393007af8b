"""
Typed dataclasses for DNS probe runs.
Every instance lives for a single pipeline invocation only.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Tuple


UNSPECIFIED_ADDRESS = '0.0.0.0'


class Transport(Enum):
    UDP = 'UDP'
    TCP = 'TCP'


class Locale(Enum):
    """Host display language, selects the ping output patterns."""
    ZH = 'zh-CN'
    EN = 'en-US'


class Platform(Enum):
    """Host OS family, selects ping arguments and output encoding."""
    WINDOWS = 'windows'
    LINUX = 'linux'
    DARWIN = 'darwin'


@dataclass(frozen=True)
class NameServerEndpoint:
    """One nameserver reached over one transport."""
    address: str
    transport: Transport
    timeout: float
    port: int = 53

    def __str__(self) -> str:
        return f"{self.address} ({self.transport.value})"


class ResolvedAddressSet:
    """Deduplicated IPv4 addresses gathered from every nameserver.

    Keeps first-seen order. The unspecified address is never stored.
    """

    def __init__(self):
        self._addresses: List[str] = []
        self._frozen = False

    def add(self, address: str) -> bool:
        if self._frozen:
            raise RuntimeError("ResolvedAddressSet is frozen")
        if address == UNSPECIFIED_ADDRESS or address in self._addresses:
            return False
        self._addresses.append(address)
        return True

    def freeze(self):
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, address) -> bool:
        return address in self._addresses

    def __iter__(self) -> Iterator[str]:
        return iter(self._addresses)

    def __len__(self) -> int:
        return len(self._addresses)

    def __repr__(self):
        return f'<ResolvedAddressSet {self._addresses}>'


@dataclass(frozen=True)
class RawProbeResult:
    """Raw ping output for one IP, or the reason the ping could not run."""
    ip: str
    output: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.output is not None


@dataclass(frozen=True)
class PingMetrics:
    """Parsed ping statistics. Unparsed fields keep worst-case defaults."""
    ip: str
    min: int = 0
    avg: int = 0
    max: int = 0
    loss: int = 100

    @property
    def sort_key(self) -> Tuple[int, int, int, int]:
        return (self.loss, self.avg, self.max, self.min)
