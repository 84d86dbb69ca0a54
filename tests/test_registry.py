import logging

import pytest

from pcapeasy.dispatch import HandlerRegistry
from pcapeasy.exceptions import ConfigError
from pcapeasy.models import Key


def _noop(*args):
    pass


def test_register_accepts_key_forms():
    registry = HandlerRegistry()
    registry.register(Key.TCP, _noop)
    registry.register("icmp-echo", _noop)
    registry.register("arp_reply", _noop)

    assert Key.ICMP_ECHO in registry
    assert "arp-reply" in registry
    assert registry.keys() == [Key.ARP_REPLY, Key.ICMP_ECHO, Key.TCP]
    assert len(registry) == 3


def test_last_registration_wins(caplog):
    first, second = (lambda *a: 1), (lambda *a: 2)
    registry = HandlerRegistry()
    registry.register(Key.UDP, first)
    with caplog.at_level(logging.DEBUG, logger="pcapeasy.dispatch.registry"):
        registry.register(Key.UDP, second)

    assert registry.resolve(Key.UDP) is second
    assert "Replacing handler for udp" in caplog.text


def test_unknown_key_rejected():
    with pytest.raises(ConfigError, match="Unknown classification key"):
        HandlerRegistry({"ipx": _noop})


def test_non_callable_rejected():
    with pytest.raises(ConfigError, match="not callable"):
        HandlerRegistry({Key.TCP: "print"})


def test_frozen_registry_rejects_changes():
    registry = HandlerRegistry({Key.TCP: _noop}).freeze()
    assert registry.frozen
    with pytest.raises(ConfigError):
        registry.register(Key.UDP, _noop)
    assert registry.resolve(Key.UDP) is None
