"""Unit tests for relaychat.config and relaychat.netinfo."""

import unittest
from unittest.mock import patch

from relaychat import netinfo
from relaychat.config import DEFAULT_PORT, RelayConfig, parse_address, validate_port


class TestPortValidation(unittest.TestCase):

    def test_valid_ports(self):
        self.assertEqual(validate_port("9080"), 9080)
        self.assertEqual(validate_port(1024), 1024)
        self.assertEqual(validate_port(65535), 65535)

    def test_invalid_ports(self):
        for port in [0, 80, 1023, 65536, "abc", None]:
            with self.subTest(port=port):
                with self.assertRaises(ValueError):
                    validate_port(port)

    def test_parse_address(self):
        self.assertEqual(parse_address("localhost:8080"), ("localhost", 8080))
        self.assertEqual(parse_address("192.168.1.100:9080"), ("192.168.1.100", 9080))

    def test_parse_address_rejects_bad_input(self):
        for address in ["", "localhost", "a:b:c", ":9080", "host:80", "host:port"]:
            with self.subTest(address=address):
                with self.assertRaises(ValueError):
                    parse_address(address)


class TestRelayConfig(unittest.TestCase):

    def test_defaults(self):
        cfg = RelayConfig.from_env({})
        self.assertEqual(cfg.port, DEFAULT_PORT)
        self.assertEqual(cfg.connect_timeout, 5.0)
        self.assertEqual(cfg.host, "0.0.0.0")

    def test_env_overrides(self):
        cfg = RelayConfig.from_env({
            "RELAYCHAT_HOST": "127.0.0.1",
            "RELAYCHAT_PORT": "9999",
            "RELAYCHAT_CONNECT_TIMEOUT": "2.5",
            "RELAYCHAT_MAX_FRAME_SIZE": "4096",
            "RELAYCHAT_LOG_LEVEL": "debug",
        })
        self.assertEqual((cfg.host, cfg.port, cfg.connect_timeout), ("127.0.0.1", 9999, 2.5))
        self.assertEqual(cfg.max_frame_size, 4096)
        self.assertEqual(cfg.log_level, "DEBUG")

    def test_env_port_is_validated(self):
        with self.assertRaises(ValueError):
            RelayConfig.from_env({"RELAYCHAT_PORT": "80"})


class TestAdvertisedHostname(unittest.TestCase):

    def test_first_non_loopback_ipv4(self):
        with patch.object(netinfo, "local_ipv4_addresses", return_value=["127.0.1.1", "192.168.1.20", "10.0.0.3"]):
            self.assertEqual(netinfo.advertised_hostname(), "192.168.1.20")

    def test_falls_back_to_localhost(self):
        with patch.object(netinfo, "local_ipv4_addresses", return_value=["127.0.0.1", "0.0.0.0"]):
            self.assertEqual(netinfo.advertised_hostname(), "localhost")
        with patch.object(netinfo, "local_ipv4_addresses", return_value=[]):
            self.assertEqual(netinfo.advertised_hostname(), "localhost")

    def test_local_addresses_are_strings(self):
        for address in netinfo.local_ipv4_addresses():
            self.assertIsInstance(address, str)


if __name__ == "__main__":
    unittest.main()
