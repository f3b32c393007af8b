"""Ping output parsing and latency ranking.

Ping prints its summary differently per OS and per display language, so the
regular expressions are kept in a table keyed by (platform, locale). Parsing
is best effort: a summary that cannot be found leaves worst-case values in
place so the address still shows up, last, in the ranking.
"""

import re
import logging
import ipaddress
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from dns_types import Locale, PingMetrics, Platform


@dataclass(frozen=True)
class PingPatterns:
    """Regexes for one ping flavour.

    latency_groups names the captured groups in the order they appear.
    """
    loss: Pattern
    loss_group: int
    latency: Pattern
    latency_groups: Tuple[str, str, str]


WINDOWS_EN_PATTERNS = PingPatterns(
    loss=re.compile(r"\((\d+)% loss\)"),
    loss_group=1,
    latency=re.compile(r"Minimum = (\d+)ms, Maximum = (\d+)ms, Average = (\d+)ms"),
    latency_groups=('min', 'max', 'avg'),
)

WINDOWS_ZH_PATTERNS = PingPatterns(
    loss=re.compile(r"丢失 = (\d+) \((\d+)% 丢失\)"),
    loss_group=2,
    latency=re.compile(r"最短 = (\d+)ms，最长 = (\d+)ms，平均 = (\d+)ms"),
    latency_groups=('min', 'max', 'avg'),
)

# iputils and BSD ping print the same summary regardless of language
POSIX_PATTERNS = PingPatterns(
    loss=re.compile(r"(\d+(?:\.\d+)?)% packet loss"),
    loss_group=1,
    latency=re.compile(r"min/avg/max/(?:mdev|stddev) = (\d+(?:\.\d+)?)/(\d+(?:\.\d+)?)/(\d+(?:\.\d+)?)"),
    latency_groups=('min', 'avg', 'max'),
)

PING_PATTERNS: Dict[Tuple[Platform, Locale], PingPatterns] = {
    (Platform.WINDOWS, Locale.EN): WINDOWS_EN_PATTERNS,
    (Platform.WINDOWS, Locale.ZH): WINDOWS_ZH_PATTERNS,
    (Platform.LINUX, Locale.EN): POSIX_PATTERNS,
    (Platform.LINUX, Locale.ZH): POSIX_PATTERNS,
    (Platform.DARWIN, Locale.EN): POSIX_PATTERNS,
    (Platform.DARWIN, Locale.ZH): POSIX_PATTERNS,
}


def get_patterns(platform: Platform, locale: Locale) -> PingPatterns:
    return PING_PATTERNS[(platform, locale)]


def _to_int(value: str) -> Optional[int]:
    try:
        return int(round(float(value)))
    except ValueError:
        return None


def parse_ping_output(ip: str, raw: str, locale: Locale,
                      platform: Platform) -> PingMetrics:
    """Extract loss and min/avg/max latency from raw ping text."""
    patterns = get_patterns(platform, locale)
    values = {'min': 0, 'avg': 0, 'max': 0, 'loss': 100}

    match = patterns.loss.search(raw or '')
    if match:
        loss = _to_int(match.group(patterns.loss_group))
        if loss is not None:
            values['loss'] = min(max(loss, 0), 100)
    else:
        logging.debug(f"No packet loss summary in ping output for {ip}")

    match = patterns.latency.search(raw or '')
    if match:
        for index, name in enumerate(patterns.latency_groups, start=1):
            latency = _to_int(match.group(index))
            if latency is not None:
                values[name] = latency
    else:
        logging.debug(f"No latency summary in ping output for {ip}")

    return PingMetrics(ip=ip, **values)


def _address_key(ip: str) -> Tuple[int, int, str]:
    try:
        return (0, int(ipaddress.ip_address(ip)), ip)
    except ValueError:
        return (1, 0, ip)


def rank_metrics(metrics: Iterable[PingMetrics]) -> List[PingMetrics]:
    """Best first: lowest loss, then lowest avg, max and min latency.

    Full ties fall back to address order so repeated runs agree.
    """
    return sorted(metrics, key=lambda m: m.sort_key + (_address_key(m.ip),))


def format_metrics_line(metrics: PingMetrics) -> str:
    return (
        f"IP: {metrics.ip}, Avg Latency: {metrics.avg}ms, Min Latency: {metrics.min}ms, "
        f"Max Latency: {metrics.max}ms, Packet Loss: {metrics.loss}%"
    )
