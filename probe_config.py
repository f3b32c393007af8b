import os
import sys
import locale
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Mapping, Optional, Tuple

from dns_types import Locale, Platform


NAMESERVERS: Tuple[str, ...] = (
    "1.1.1.1",
    "1.2.4.8",
    "1.12.12.12",
    "4.2.2.1",
    "8.8.8.8",
    "8.20.247.20",
    "8.26.56.26",
    "9.9.9.9",
    "45.11.45.11",
    "52.80.52.52",
    "64.6.64.6",
    "74.82.42.42",
    "77.88.8.8",
    "80.80.80.80",
    "84.200.69.80",
    "94.140.14.14",
    "100.95.0.1",
    "101.101.101.101",
    "101.226.4.6",
    "114.114.114.114",
    "117.50.10.10",
    "119.29.29.29",
    "156.154.70.1",
    "168.95.1.1",
    "168.126.63.1",
    "180.76.76.76",
    "180.184.1.1",
    "182.254.118.118",
    "185.222.222.222",
    "195.46.39.39",
    "199.85.126.10",
    "202.120.2.100",
    "208.67.222.222",
    "210.2.4.8",
    "223.5.5.5",
)

QUERY_TIMEOUT = 3.0
PING_COUNT = 4
MAX_WORKERS = 64

# Anything not listed here (dns_query, ping_wait) uses ProbeConfig.query_timeout
DEFAULT_TIMEOUTS = {
    'ping_grace': 5.0,
}

# Locale strings that select the Chinese ping patterns
ZH_LOCALE_PREFIXES = ('zh-CN', 'zh-Hans-CN', 'Chinese (Simplified)')

LOCALE_ENV_VARS = ('LC_ALL', 'LC_MESSAGES', 'LANG')

PING_ENCODINGS = {
    (Platform.WINDOWS, Locale.ZH): 'gbk',
    (Platform.WINDOWS, Locale.EN): 'cp437',
}


def _normalize_locale_name(name: str) -> str:
    name = name.split('.', 1)[0].split('@', 1)[0]
    return name.replace('_', '-')


def detect_locale(environ: Optional[Mapping[str, str]] = None,
                  fallback: Optional[str] = None) -> Locale:
    """Pick the ping pattern language from the host environment.

    Environment variables win over the process locale. Anything that is not
    simplified Chinese (mainland) resolves to English.
    """
    env = os.environ if environ is None else environ
    candidates: List[str] = [env.get(var, '') for var in LOCALE_ENV_VARS]
    if fallback is not None:
        candidates.append(fallback)
    elif environ is None:
        try:
            candidates.append(locale.getlocale()[0] or '')
        except ValueError as e:
            logging.debug(f"Could not read process locale: {e}")

    for candidate in candidates:
        if not candidate or candidate in ('C', 'POSIX'):
            continue
        name = _normalize_locale_name(candidate)
        if any(name.startswith(prefix) for prefix in ZH_LOCALE_PREFIXES):
            return Locale.ZH
        return Locale.EN
    return Locale.EN


def detect_platform(sys_platform: Optional[str] = None) -> Platform:
    """Map sys.platform onto the ping flavours we know how to drive."""
    name = sys.platform if sys_platform is None else sys_platform
    if name.startswith('win') or name == 'cygwin':
        return Platform.WINDOWS
    if name == 'darwin':
        return Platform.DARWIN
    return Platform.LINUX


@dataclass(frozen=True)
class ProbeConfig:
    """Process-wide settings for a probe run, built once and passed in."""
    locale: Locale = Locale.EN
    platform: Platform = Platform.LINUX
    nameservers: Tuple[str, ...] = NAMESERVERS
    query_timeout: float = QUERY_TIMEOUT
    dns_tries: int = 1
    ping_count: int = PING_COUNT
    max_workers: int = MAX_WORKERS
    timeouts: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TIMEOUTS), compare=False)

    @classmethod
    def from_environment(cls, **overrides) -> 'ProbeConfig':
        settings = {
            'locale': detect_locale(),
            'platform': detect_platform(),
        }
        settings.update(overrides)
        config = cls(**settings)
        logging.debug(f"Probe config: locale={config.locale.value} platform={config.platform.value}")
        return config

    def get_timeout(self, operation: str) -> float:
        return self.timeouts.get(operation, self.query_timeout)

    @property
    def ping_encoding(self) -> str:
        return PING_ENCODINGS.get((self.platform, self.locale), 'utf-8')

    @property
    def ping_deadline(self) -> float:
        """Upper bound for one whole ping invocation, in seconds."""
        return self.ping_count * self.get_timeout('ping_wait') + self.get_timeout('ping_grace')

    def ping_command(self, ip: str) -> List[str]:
        wait = self.get_timeout('ping_wait')
        if self.platform == Platform.WINDOWS:
            return ["ping", "-n", str(self.ping_count), "-w", str(max(int(wait * 1000), 100)), ip]
        if self.platform == Platform.DARWIN:
            return ["ping", "-c", str(self.ping_count), "-W", str(max(int(wait * 1000), 100)), ip]
        return ["ping", "-c", str(self.ping_count), "-W", str(max(int(wait), 1)), ip]


@lru_cache(maxsize=1)
def default_config() -> ProbeConfig:
    """The process-wide config, read from the environment on first use."""
    return ProbeConfig.from_environment()
