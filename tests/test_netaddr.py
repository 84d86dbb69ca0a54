import ipaddress

import pytest

from pcapeasy.utils import netaddr


@pytest.mark.parametrize("raw", ["192.168.1.10", 3232235786, b"\xc0\xa8\x01\x0a",
                                 ipaddress.IPv4Address("192.168.1.10")])
def test_to_text(raw):
    assert netaddr.to_text(raw) == "192.168.1.10"


def test_membership():
    assert netaddr.membership("192.168.1.200", "192.168.1.0", "255.255.255.0")
    assert not netaddr.membership("192.168.2.1", "192.168.1.0", "255.255.255.0")
    assert netaddr.membership("10.200.0.1", "10.0.0.0", "255.0.0.0")


def test_cidr_and_prefix():
    assert netaddr.cidr("172.16.5.4", "255.255.0.0") == "172.16.0.0/16"
    assert netaddr.prefix_length("255.255.255.128") == 25


def test_invalid_address():
    with pytest.raises(ValueError):
        netaddr.to_text("not-an-ip")
