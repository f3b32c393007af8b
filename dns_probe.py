import sys
import shutil
import logging
import ipaddress
import threading
import subprocess
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import idna

try:
    import dns.exception
    import dns.resolver
except ImportError:
    print("Error: the 'dnspython' package is required.")
    sys.exit(1)

from dns_types import NameServerEndpoint, PingMetrics, RawProbeResult, ResolvedAddressSet, Transport
from ping_parser import format_metrics_line, parse_ping_output, rank_metrics
from probe_config import ProbeConfig, default_config
from progress_channel import ProgressChannel

# Characters the URL host parser refuses
FORBIDDEN_HOST_CHARS = set(' \t\r\n"\'%<>\\^`{|}')

INVALID_DOMAIN_MESSAGE = "Error: invalid domain name format"
NO_NAMESERVERS_MESSAGE = "Error: no valid nameservers found"


def _discard(line: str = ''):
    pass


def _emit_text(emit: Callable[[str], object], text: str):
    lines = text.splitlines()
    if not lines:
        emit('')
        return
    for line in lines:
        emit(line)


def run_ping_command(command: Sequence[str], timeout: float) -> Tuple[int, bytes]:
    """Run ping and return (exit status, raw stdout)."""
    if not shutil.which(command[0]):
        raise FileNotFoundError(f"{command[0]} command not found")
    result = subprocess.run(list(command), capture_output=True, timeout=timeout)
    return result.returncode, result.stdout


class DNSProbe:
    """Resolve a domain through many public nameservers and rank the answers by ping."""

    def __init__(self, config: Optional[ProbeConfig] = None, dns_resolver=None, ping_runner=None):
        self.config = config or default_config()
        self.dns_timeout = self.config.get_timeout('dns_query')
        self.dns_tries = self.config.dns_tries
        self._dns_resolver = dns_resolver or self._dnspython_query
        self._ping_runner = ping_runner or run_ping_command

    def extract_host(self, domain: str) -> Optional[str]:
        """Return the host part of https://<domain>, or None if there is none."""
        domain = (domain or '').strip()
        if not domain:
            return None
        try:
            host = urlparse(f"https://{domain}").hostname
        except ValueError:
            return None
        if not host or any(c in FORBIDDEN_HOST_CHARS for c in host):
            return None
        return host

    def validate_domain(self, domain: str) -> bool:
        """Return True if a host can be extracted from domain."""
        return self.extract_host(domain) is not None

    def domain_to_ascii(self, domain: str) -> str:
        """Convert Unicode domain names to ASCII using IDNA."""
        domain = domain.rstrip(".")
        try:
            return idna.encode(domain, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            logging.debug(f"IDNA encoding failed for {domain}: {e}")
            return domain

    def valid_nameservers(self) -> List[str]:
        nameservers = []
        for address in self.config.nameservers:
            try:
                nameservers.append(str(ipaddress.IPv4Address(address)))
            except ValueError:
                logging.warning(f"Skipping invalid nameserver address: {address}")
        return nameservers

    def _dnspython_query(self, domain: str, endpoint: NameServerEndpoint) -> List[str]:
        """A lookup against a single nameserver, one attempt, no DNSSEC."""
        resolver = dns.resolver.Resolver(configure=False)
        resolver.port = endpoint.port
        resolver.nameservers = [endpoint.address]
        resolver.timeout = endpoint.timeout
        resolver.lifetime = endpoint.timeout * self.dns_tries
        # EDNS0 without the DO bit
        resolver.use_edns(0, 0, 1232)

        answer = resolver.resolve(
            domain,
            "A",
            tcp=endpoint.transport == Transport.TCP,
            search=False,
            raise_on_no_answer=False,
        )
        if answer.rrset is None:
            return []
        return [rr.address for rr in answer.rrset]

    def _lookup(self, domain: str, endpoint: NameServerEndpoint) -> List[str]:
        try:
            answers = self._dns_resolver(domain, endpoint)
        except dns.resolver.NXDOMAIN:
            logging.debug(f"Domain {domain} not found via {endpoint}")
            return []
        except dns.resolver.NoAnswer:
            logging.debug(f"No A records for {domain} via {endpoint}")
            return []
        except dns.exception.Timeout:
            logging.debug(f"Timeout querying {endpoint} for {domain}")
            return []
        except Exception as e:
            logging.debug(f"DNS query error with {endpoint}: {e}")
            return []

        ips = []
        for answer in answers:
            try:
                ip = str(ipaddress.IPv4Address(str(answer).strip()))
            except ValueError:
                logging.debug(f"Ignoring non-IPv4 answer {answer!r} from {endpoint}")
                continue
            if ip != "0.0.0.0" and ip not in ips:
                ips.append(ip)
        return ips

    def query_nameserver(self, domain: str, address: str, emit=_discard) -> List[str]:
        """Query one nameserver over UDP, falling back to TCP when UDP gives nothing."""
        for transport in (Transport.UDP, Transport.TCP):
            endpoint = NameServerEndpoint(address, transport, self.dns_timeout)
            emit(f"Query domain '{domain}' using nameserver {address} ({transport.value})")
            ips = self._lookup(domain, endpoint)
            if ips:
                for ip in ips:
                    emit(f"Found IP for domain '{domain}' : {ip}")
                return ips
        return []

    def resolve_domain(self, domain: str, emit=_discard) -> ResolvedAddressSet:
        """Fan the query out to every nameserver and merge the unique addresses."""
        resolved = ResolvedAddressSet()
        nameservers = self.valid_nameservers()
        if nameservers:
            workers = min(len(nameservers), self.config.max_workers)
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dns-query") as pool:
                futures = {pool.submit(self.query_nameserver, domain, ns, emit): ns for ns in nameservers}
                for future in as_completed(futures):
                    try:
                        ips = future.result()
                    except Exception as e:
                        logging.warning(f"Nameserver task for {futures[future]} failed: {e}")
                        continue
                    for ip in ips:
                        resolved.add(ip)
        resolved.freeze()
        logging.debug(f"Resolved {domain} to {len(resolved)} unique address(es)")
        return resolved

    def ping_ip(self, ip: str) -> RawProbeResult:
        """Run the platform ping against ip and capture its text output."""
        command = self.config.ping_command(ip)
        try:
            returncode, stdout = self._ping_runner(command, self.config.ping_deadline)
        except subprocess.TimeoutExpired as e:
            logging.debug(f"Ping {ip} timed out: {e}")
            return RawProbeResult(ip, error=f"ping timed out after {e.timeout:g}s")
        except OSError as e:
            logging.debug(f"Ping {ip} could not start: {e}")
            return RawProbeResult(ip, error=f"Failed to execute ping: {e}")

        output = (stdout or b"").decode(self.config.ping_encoding, errors="replace").strip()
        # 1 means no reply was received, which still carries a summary
        if returncode not in (0, 1):
            return RawProbeResult(ip, error=f"ping exited with status {returncode}")
        return RawProbeResult(ip, output=output)

    def probe_ips(self, ips: Sequence[str], emit=_discard) -> List[RawProbeResult]:
        """Ping every address concurrently, streaming each output as it completes."""
        results: List[RawProbeResult] = []
        if not ips:
            return results
        workers = min(len(ips), self.config.max_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ping") as pool:
            futures = [pool.submit(self.ping_ip, ip) for ip in ips]
            for future in as_completed(futures):
                result = future.result()
                if result.ok:
                    _emit_text(emit, result.output)
                else:
                    emit(f"Run ping command failed: {result.error}")
                results.append(result)
        return results

    def parse_results(self, results: Sequence[RawProbeResult]) -> List[PingMetrics]:
        return [
            parse_ping_output(r.ip, r.output, self.config.locale, self.config.platform)
            for r in results if r.ok
        ]

    def run_query(self, domain: str, channel: ProgressChannel) -> List[PingMetrics]:
        """Run the full pipeline, reporting to channel, and close it at the end."""
        emit = channel.send
        try:
            host = self.extract_host(domain)
            if host is None:
                emit(INVALID_DOMAIN_MESSAGE)
                return []
            host = self.domain_to_ascii(host)

            if not self.valid_nameservers():
                emit(NO_NAMESERVERS_MESSAGE)
                return []

            resolved = self.resolve_domain(host, emit)
            emit('')
            emit("Query domain successful")

            if not resolved:
                emit('')
                emit("no ip addresses found")
                return []
            if channel.cancelled:
                logging.debug(f"Query for {host} cancelled before probing")
                return []

            emit('')
            emit("Check results")
            raw_results = self.probe_ips(list(resolved), emit)

            ranked = rank_metrics(self.parse_results(raw_results))
            if ranked:
                emit("Display results（sorted）")
                emit('')
                for metrics in ranked:
                    emit(format_metrics_line(metrics))
            return ranked
        except Exception as e:
            logging.exception(f"DNS probe for {domain!r} failed")
            emit(f"Error: {e}")
            return []
        finally:
            channel.close()


def start_dns_query(domain: str, config: Optional[ProbeConfig] = None,
                    probe: Optional[DNSProbe] = None) -> ProgressChannel:
    """Start a probe on a background thread and return its progress channel."""
    channel = ProgressChannel()
    probe = probe or DNSProbe(config)
    worker = threading.Thread(
        target=probe.run_query,
        args=(domain, channel),
        name=f"dns-probe-{domain}",
        daemon=True,
    )
    try:
        worker.start()
    except RuntimeError as e:
        logging.error(f"Failed to start DNS probe thread: {e}")
        channel.send(f"Error: failed to start query: {e}")
        channel.close()
    return channel
