"""Tests for random names and private address discovery."""
import ipaddress
import string

import pytest

from fds_common import (
    DEFAULT_PRIVATE_CIDRS,
    FALLBACK_IP,
    ConfigError,
    is_private_ip,
    parse_private_blocks,
    private_ip,
    random_names,
)


def test_random_names_are_forty_ascii_letters():
    names = random_names()
    for _ in range(50):
        name = next(names)
        assert len(name) == 40
        assert set(name) <= set(string.ascii_letters)


def test_random_names_do_not_repeat_within_a_run():
    names = random_names()
    batch = [next(names) for _ in range(1000)]
    assert len(set(batch)) == len(batch)


def test_random_names_custom_length_and_alphabet():
    name = next(random_names(length=8, alphabet="ab"))
    assert len(name) == 8
    assert set(name) <= {"a", "b"}


def test_default_blocks():
    blocks = parse_private_blocks()
    assert blocks == tuple(ipaddress.IPv4Network(c) for c in DEFAULT_PRIVATE_CIDRS)
    assert isinstance(blocks, tuple)


def test_bad_cidr_is_a_config_error():
    with pytest.raises(ConfigError, match="10.0.0.0/33"):
        parse_private_blocks(["10.0.0.0/8", "10.0.0.0/33"])


@pytest.mark.parametrize(
    "ip,expected",
    [
        ("10.1.2.3", True),
        ("172.16.0.1", True),
        ("172.31.255.255", True),
        ("172.32.0.1", False),
        ("192.168.1.10", True),
        ("169.254.0.5", True),
        ("127.0.0.1", False),
        ("8.8.8.8", False),
        ("fe80::1", False),
        ("not-an-ip", False),
    ],
)
def test_is_private_ip(ip, expected):
    assert is_private_ip(ip, parse_private_blocks()) is expected


def test_private_ip_picks_first_private_address():
    blocks = parse_private_blocks()
    addrs = ["127.0.0.1", "8.8.8.8", "192.168.0.7", "10.0.0.2"]
    assert private_ip(blocks, addrs) == "192.168.0.7"


def test_private_ip_falls_back():
    assert private_ip(parse_private_blocks(), ["127.0.0.1", "1.1.1.1"]) == FALLBACK_IP
    assert private_ip(parse_private_blocks(), []) == FALLBACK_IP


def test_private_ip_uses_given_blocks_only():
    blocks = parse_private_blocks(["192.0.2.0/24"])
    assert private_ip(blocks, ["10.0.0.1", "192.0.2.9"]) == "192.0.2.9"


def test_private_ip_enumerates_interfaces(monkeypatch):
    monkeypatch.setattr("fds_common.interface_addresses", lambda: ["127.0.0.1", "172.20.0.3"])
    assert private_ip(parse_private_blocks()) == "172.20.0.3"
