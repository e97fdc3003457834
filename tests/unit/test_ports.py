"""Tests for domain port interfaces (ABC contracts).

Every port must be an ABC that cannot be instantiated directly.
"""

from __future__ import annotations

from abc import ABC

import pytest

from domain.ports import (
    CachePort,
    EventPublisherPort,
    EventSinkPort,
    ProjectLockPort,
)

PORTS = [CachePort, ProjectLockPort, EventPublisherPort, EventSinkPort]


@pytest.mark.parametrize("port", PORTS)
def test_is_abstract(port):
    assert issubclass(port, ABC)


@pytest.mark.parametrize("port", PORTS)
def test_cannot_instantiate(port):
    with pytest.raises(TypeError):
        port()


class TestCachePort:
    def test_abstract_methods(self):
        assert CachePort.__abstractmethods__ == {"get", "set", "invalidate"}

    def test_concrete_subclass(self):
        class DictCache(CachePort):
            def __init__(self):
                self.data = {}

            def get(self, key):
                return self.data.get(key)

            def set(self, key, value, ttl=3600):
                self.data[key] = value

            def invalidate(self, prefix):
                self.data = {k: v for k, v in self.data.items() if not k.startswith(prefix)}

        cache = DictCache()
        cache.set("a:1", 1)
        cache.invalidate("a:")
        assert cache.get("a:1") is None


class TestProjectLockPort:
    def test_abstract_methods(self):
        assert ProjectLockPort.__abstractmethods__ == {"verrouiller"}


class TestEventPorts:
    def test_publisher_abstract_methods(self):
        assert EventPublisherPort.__abstractmethods__ == {"publish"}

    def test_sink_abstract_methods(self):
        assert EventSinkPort.__abstractmethods__ == {"deliver"}
