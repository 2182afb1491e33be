"""
tests/test_bus.py — In-Process Message Bus
===========================================
"""

from __future__ import annotations

import pytest
from conftest import run_async

from director.services import bus as bus_api
from director.services.bus import LocalBus


class TestLocalBus:
    def test_whisper_fans_out_to_subscribers(self):
        bus = LocalBus()
        received = []

        async def async_handler(data):
            received.append(("async", data))

        bus.subscribe(bus_api.WHISPERED, async_handler)
        bus.subscribe(bus_api.WHISPERED, lambda data: received.append(("sync", data)))

        run_async(bus.request(bus_api.WHISPER, {"data": {"type": "director.state"}}))
        assert received == [
            ("async", {"type": "director.state"}),
            ("sync", {"type": "director.state"}),
        ]

    def test_request_uses_responder(self):
        bus = LocalBus()
        bus.register(bus_api.SETTINGS_GET, lambda params: {"settings": {"overtakeMargin": 5}})
        assert run_async(bus.request(bus_api.SETTINGS_GET)) == {"settings": {"overtakeMargin": 5}}

    def test_async_responder(self):
        bus = LocalBus()

        async def responder(params):
            return params["n"] + 1

        bus.register("math.inc", responder)
        assert run_async(bus.request("math.inc", {"n": 1})) == 2

    def test_unknown_method_raises(self):
        with pytest.raises(LookupError):
            run_async(LocalBus().request(bus_api.TIP_MENU_GET))

    def test_failing_subscriber_does_not_stop_others(self):
        bus = LocalBus()
        received = []

        def broken(data):
            raise RuntimeError("boom")

        bus.subscribe(bus_api.TOKENS_SPENT, broken)
        bus.subscribe(bus_api.TOKENS_SPENT, received.append)
        run_async(bus.publish(bus_api.TOKENS_SPENT, {"tokensAmount": 1}))
        assert received == [{"tokensAmount": 1}]
