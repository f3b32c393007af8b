"""
Unit tests for DNS Probe core logic.
Tests domain validation, nameserver fallback, address merging and probing.
"""

import unittest
import subprocess
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import dns.resolver

from dns_types import Platform, Transport
from tests.probe_interface import (
    TCP, UDP, create_test_probe, linux_ping_output, make_dns_resolver,
    make_ping_runner, make_test_config,
)


class TestDomainValidation(unittest.TestCase):
    """Tests for domain validation logic."""

    def setUp(self):
        self.probe = create_test_probe()

    def test_valid_domains(self):
        """Valid domain formats should pass."""
        valid_domains = [
            "example.com",
            "sub.example.com",
            "example.co.uk",
            "test-domain.org",
            "localhost",
            "  example.com  ",
        ]
        for domain in valid_domains:
            self.assertTrue(self.probe.validate_domain(domain), f"Should be valid: {domain}")

    def test_invalid_domains(self):
        """Inputs without an extractable host should fail."""
        invalid_domains = [
            "",
            "   ",
            "/path-only",
            "?query",
            "#fragment",
            "exa mple.com",
            "example%20.com",
            "[::1",
        ]
        for domain in invalid_domains:
            self.assertFalse(self.probe.validate_domain(domain), f"Should be invalid: {domain!r}")

    def test_extract_host_strips_path_and_port(self):
        self.assertEqual(self.probe.extract_host("Example.COM:8443/path"), "example.com")

    def test_domain_to_ascii(self):
        self.assertEqual(self.probe.domain_to_ascii("example.com."), "example.com")
        self.assertEqual(self.probe.domain_to_ascii("bücher.example"), "xn--bcher-kva.example")

    def test_domain_to_ascii_keeps_unencodable_names(self):
        self.assertEqual(self.probe.domain_to_ascii("_dmarc.example.com"), "_dmarc.example.com")


class TestNameserverQuery(unittest.TestCase):
    """Tests for per-nameserver UDP then TCP fallback."""

    def test_udp_success_skips_tcp(self):
        calls = []
        probe = create_test_probe(dns_resolver=make_dns_resolver({
            ('10.0.0.1', UDP): ['93.184.216.34'],
            ('10.0.0.1', TCP): ['93.184.216.99'],
        }, calls))
        lines = []
        ips = probe.query_nameserver('example.com', '10.0.0.1', lines.append)
        self.assertEqual(ips, ['93.184.216.34'])
        self.assertEqual([c[2] for c in calls], [Transport.UDP])
        self.assertEqual(lines, [
            "Query domain 'example.com' using nameserver 10.0.0.1 (UDP)",
            "Found IP for domain 'example.com' : 93.184.216.34",
        ])

    def test_udp_timeout_falls_back_to_tcp(self):
        calls = []
        probe = create_test_probe(dns_resolver=make_dns_resolver({
            ('10.0.0.1', TCP): ['93.184.216.34'],
        }, calls))
        lines = []
        ips = probe.query_nameserver('example.com', '10.0.0.1', lines.append)
        self.assertEqual(ips, ['93.184.216.34'])
        self.assertEqual([c[2] for c in calls], [Transport.UDP, Transport.TCP])
        self.assertIn("Query domain 'example.com' using nameserver 10.0.0.1 (TCP)", lines)

    def test_empty_udp_answer_falls_back_to_tcp(self):
        calls = []
        probe = create_test_probe(dns_resolver=make_dns_resolver({
            ('10.0.0.1', UDP): [],
            ('10.0.0.1', TCP): [],
        }, calls))
        self.assertEqual(probe.query_nameserver('example.com', '10.0.0.1'), [])
        self.assertEqual(len(calls), 2)

    def test_resolver_errors_are_not_raised(self):
        errors = [
            dns.resolver.NXDOMAIN(),
            dns.resolver.NoAnswer(),
            dns.resolver.NoNameservers(),
            ConnectionRefusedError("refused"),
        ]
        for error in errors:
            probe = create_test_probe(dns_resolver=make_dns_resolver({
                ('10.0.0.1', UDP): error,
                ('10.0.0.1', TCP): error,
            }))
            self.assertEqual(probe.query_nameserver('example.com', '10.0.0.1'), [],
                             f"Failed for: {type(error).__name__}")

    def test_only_ipv4_answers_are_kept(self):
        probe = create_test_probe(dns_resolver=make_dns_resolver({
            ('10.0.0.1', UDP): ['2001:db8::1', 'not-an-ip', '198.51.100.7'],
        }))
        self.assertEqual(probe.query_nameserver('example.com', '10.0.0.1'), ['198.51.100.7'])

    def test_unspecified_only_answer_is_not_usable(self):
        calls = []
        probe = create_test_probe(dns_resolver=make_dns_resolver({
            ('10.0.0.1', UDP): ['0.0.0.0'],
            ('10.0.0.1', TCP): ['198.51.100.7'],
        }, calls))
        self.assertEqual(probe.query_nameserver('example.com', '10.0.0.1'), ['198.51.100.7'])
        self.assertEqual(len(calls), 2)


class TestResolveDomain(unittest.TestCase):
    """Tests for nameserver fan-out and address merging."""

    def test_identical_answers_are_deduplicated(self):
        answers = {(ns, UDP): ['93.184.216.34'] for ns in ('10.0.0.1', '10.0.0.2', '10.0.0.3')}
        probe = create_test_probe(dns_resolver=make_dns_resolver(answers))
        resolved = probe.resolve_domain('example.com')
        self.assertEqual(list(resolved), ['93.184.216.34'])
        self.assertTrue(resolved.frozen)

    def test_answers_from_all_nameservers_are_merged(self):
        probe = create_test_probe(dns_resolver=make_dns_resolver({
            ('10.0.0.1', UDP): ['192.0.2.1', '192.0.2.2'],
            ('10.0.0.2', TCP): ['192.0.2.2', '192.0.2.3'],
        }))
        resolved = probe.resolve_domain('example.com')
        self.assertEqual(sorted(resolved), ['192.0.2.1', '192.0.2.2', '192.0.2.3'])

    def test_unspecified_address_is_filtered(self):
        probe = create_test_probe(dns_resolver=make_dns_resolver({
            ('10.0.0.1', UDP): ['0.0.0.0', '192.0.2.1'],
            ('10.0.0.2', UDP): ['0.0.0.0'],
        }))
        resolved = probe.resolve_domain('example.com')
        self.assertNotIn('0.0.0.0', resolved)
        self.assertEqual(list(resolved), ['192.0.2.1'])

    def test_resolved_set_is_frozen_after_fan_in(self):
        probe = create_test_probe(dns_resolver=make_dns_resolver({('10.0.0.1', UDP): ['192.0.2.1']}))
        resolved = probe.resolve_domain('example.com')
        with self.assertRaises(RuntimeError):
            resolved.add('192.0.2.2')

    def test_all_nameservers_failing_gives_empty_set(self):
        probe = create_test_probe()
        self.assertEqual(len(probe.resolve_domain('example.com')), 0)

    def test_invalid_table_entries_are_skipped(self):
        config = make_test_config(nameservers=('10.0.0.1', 'bogus', '2001:db8::53'))
        probe = create_test_probe(config=config)
        self.assertEqual(probe.valid_nameservers(), ['10.0.0.1'])


class TestPingProbe(unittest.TestCase):
    """Tests for ping invocation and error capture."""

    def test_ping_output_is_captured(self):
        output = linux_ping_output('192.0.2.1', 10, 12, 15)
        probe = create_test_probe(ping_runner=make_ping_runner({'192.0.2.1': output}))
        result = probe.ping_ip('192.0.2.1')
        self.assertTrue(result.ok)
        self.assertEqual(result.output, output)

    def test_ping_command_uses_configured_platform(self):
        calls = []
        config = make_test_config(platform=Platform.WINDOWS)
        probe = create_test_probe(config=config, ping_runner=make_ping_runner({'192.0.2.1': ''}, calls))
        probe.ping_ip('192.0.2.1')
        self.assertEqual(calls[0], ['ping', '-n', '4', '-w', '500', '192.0.2.1'])

    def test_launch_failure_is_an_error_result(self):
        probe = create_test_probe()
        result = probe.ping_ip('192.0.2.1')
        self.assertFalse(result.ok)
        self.assertIn('Failed to execute ping', result.error)

    def test_timeout_is_an_error_result(self):
        probe = create_test_probe(ping_runner=make_ping_runner({
            '192.0.2.1': subprocess.TimeoutExpired(['ping'], 7),
        }))
        result = probe.ping_ip('192.0.2.1')
        self.assertFalse(result.ok)
        self.assertIn('timed out', result.error)

    def test_no_reply_exit_status_keeps_output(self):
        probe = create_test_probe(ping_runner=make_ping_runner({
            '192.0.2.1': (1, '4 packets transmitted, 0 received, 100% packet loss'),
        }))
        self.assertTrue(probe.ping_ip('192.0.2.1').ok)

    def test_abnormal_exit_status_is_an_error_result(self):
        probe = create_test_probe(ping_runner=make_ping_runner({
            '192.0.2.1': (2, 'ping: unknown host'),
        }))
        result = probe.ping_ip('192.0.2.1')
        self.assertFalse(result.ok)
        self.assertIn('status 2', result.error)

    def test_windows_chinese_output_is_decoded_as_gbk(self):
        from dns_probe import DNSProbe
        from dns_types import Locale
        text = '数据包: 已发送 = 4，已接收 = 4，丢失 = 0 (0% 丢失)，'

        def runner(command, timeout):
            return 0, text.encode('gbk')

        probe = DNSProbe(make_test_config(platform=Platform.WINDOWS, locale=Locale.ZH),
                         dns_resolver=make_dns_resolver({}), ping_runner=runner)
        self.assertEqual(probe.ping_ip('192.0.2.1').output, text)

    def test_probe_ips_streams_each_output(self):
        probe = create_test_probe(ping_runner=make_ping_runner({
            '192.0.2.1': 'line one\nline two',
        }))
        lines = []
        results = probe.probe_ips(['192.0.2.1', '192.0.2.2'], lines.append)
        self.assertEqual(len(results), 2)
        self.assertIn('line one', lines)
        self.assertIn('line two', lines)
        failed = [line for line in lines if line.startswith('Run ping command failed: ')]
        self.assertEqual(len(failed), 1)


if __name__ == '__main__':
    unittest.main()
