"""
Tests for the transport adapter: wire protocol, threading and lifecycle.

Run with:  python -m pytest webview_commands/test_transport.py -v
"""

import asyncio
import json
import threading
import time

import pytest

from webview_commands.demo import build_demo_registry
from webview_commands.registry import CommandRegistry
from webview_commands.transport import (
    Request,
    Responder,
    ResponderError,
    Response,
    TransportAdapter,
    encode_envelope,
    parse_body,
)


class Collector:
    """Stands in for a host responder callback."""

    def __init__(self):
        self.responses = []
        self.done = threading.Event()

    def __call__(self, response: Response):
        self.responses.append(response)
        self.done.set()

    def wait(self, timeout=5.0) -> Response:
        assert self.done.wait(timeout), "no response delivered"
        return self.responses[0]


def post(uri, payload=None, raw=None) -> Request:
    body = raw if raw is not None else json.dumps(payload).encode()
    return Request(method="POST", uri=uri, body=body,
                   headers={"Content-Type": "application/json"})


@pytest.fixture
def adapter():
    adapter = TransportAdapter(build_demo_registry(), scheme="app")
    yield adapter
    adapter.close(cancel_pending=True, timeout=5)


# ============================================================
# Method policy
# ============================================================

class TestMethodPolicy:

    def test_options_preflight(self, adapter):
        collector = Collector()
        assert adapter.handle(Request("OPTIONS", "app://anything"), collector) is None
        response = collector.wait()
        assert response.status == 204
        assert response.body == b""
        assert response.header("Access-Control-Allow-Origin") == "*"
        assert response.header("access-control-allow-methods") == "POST, OPTIONS"
        assert response.header("Access-Control-Allow-Headers") == "Content-Type"

    def test_get_not_allowed(self, adapter):
        collector = Collector()
        adapter.handle(Request("GET", "app://greet"), collector)
        response = collector.wait()
        assert response.status == 405
        assert response.header("Allow") == "POST, OPTIONS"
        assert response.header("Access-Control-Allow-Origin") == "*"
        assert response.body == b"Method Not Allowed"

    @pytest.mark.parametrize("method", ["PUT", "DELETE", "PATCH", "HEAD"])
    def test_other_methods_not_allowed(self, adapter, method):
        collector = Collector()
        adapter.handle(Request(method, "app://greet"), collector)
        assert collector.wait().status == 405

    def test_immediate_responses_do_not_start_worker(self, adapter):
        adapter.handle(Request("OPTIONS", "app://greet"), Collector())
        assert not adapter.running

    def test_method_case_insensitive(self, adapter):
        collector = Collector()
        adapter.handle(Request("post", "app://greet", b'{"name":"Alice"}'), collector)
        assert collector.wait().status == 200


# ============================================================
# POST dispatch
# ============================================================

class TestPost:

    def test_greet(self, adapter):
        collector = Collector()
        future = adapter.handle(post("app://greet", {"name": "Alice"}), collector)
        response = future.result(timeout=5)
        assert response is collector.wait()
        assert response.status == 200
        assert response.header("Content-Type") == "application/json"
        assert response.header("Access-Control-Allow-Origin") == "*"
        assert response.body == b'{"message":"Hello, Alice!"}'

    def test_unknown_command(self, adapter):
        collector = Collector()
        adapter.handle(post("app://nope", {}), collector)
        response = collector.wait()
        assert response.status == 200
        assert response.body == b'{"error":"Unknown command: nope"}'

    def test_service_command_path(self, adapter):
        collector = Collector()
        adapter.handle(post("app://mycommands/greet/", {"name": "Bob"}), collector)
        assert json.loads(collector.wait().body) == {"message": "hi Bob"}

    def test_async_service_command(self, adapter):
        collector = Collector()
        adapter.handle(post("app://mycommands/fetch", 7), collector)
        assert json.loads(collector.wait().body) == "Fetched 7"

    def test_handler_error(self, adapter):
        collector = Collector()
        adapter.handle(post("app://mycommands/fetch", -1), collector)
        assert json.loads(collector.wait().body) == {"error": "No item with id -1"}

    def test_percent_encoded_command(self, adapter):
        collector = Collector()
        adapter.handle(post("app://%2Fgreet", {"name": "Alice"}), collector)
        assert json.loads(collector.wait().body) == {"message": "Hello, Alice!"}

    def test_malformed_body_becomes_null(self):
        registry = CommandRegistry()
        registry.register("echo", lambda args: {"got": args})
        with TransportAdapter(registry) as adapter:
            collector = Collector()
            adapter.handle(post("app://echo", raw=b"{not json"), collector)
            assert json.loads(collector.wait().body) == {"got": None}

    def test_malformed_body_fails_typed_decode(self, adapter):
        collector = Collector()
        adapter.handle(post("app://greet", raw=b""), collector)
        envelope = json.loads(collector.wait().body)
        assert "GreetArgs" in envelope["error"]

    def test_unserializable_envelope_gives_empty_body(self):
        registry = CommandRegistry()
        registry.register("nan", lambda args: float("nan"))
        with TransportAdapter(registry) as adapter:
            collector = Collector()
            adapter.handle(post("app://nan", {}), collector)
            response = collector.wait()
            assert response.status == 200
            assert response.body == b""

    def test_registry_sealed_on_first_post(self, adapter):
        adapter.handle(post("app://greet", {"name": "A"}), Collector()).result(timeout=5)
        assert adapter.registry.sealed


# ============================================================
# Addressing
# ============================================================

class TestAddressing:

    def test_windows_host_form(self, adapter):
        assert adapter.command_name("http://app.greet") == "greet"
        assert adapter.command_name("https://app.mycommands/greet/") == "mycommands/greet"

    def test_windows_host_form_disabled(self):
        adapter = TransportAdapter(CommandRegistry(), windows_host_form=False)
        assert adapter.command_name("http://app.greet") == "app.greet"

    def test_other_scheme_prefix_untouched(self, adapter):
        assert adapter.command_name("http://other.greet") == "other.greet"

    def test_custom_scheme_not_stripped(self, adapter):
        assert adapter.command_name("app://app.greet") == "app.greet"

    def test_authority_ignored(self):
        adapter = TransportAdapter(CommandRegistry(), include_authority=False)
        assert adapter.command_name("http://127.0.0.1:8000/mycommands/greet") == "mycommands/greet"


# ============================================================
# Concurrency
# ============================================================

class TestConcurrency:

    def test_out_of_order_completion(self):
        finished = []
        registry = CommandRegistry()

        async def slow(args):
            await asyncio.sleep(0.2)
            finished.append("slow")
            return "slow"

        async def fast(args):
            finished.append("fast")
            return "fast"

        registry.register("slow", slow)
        registry.register("fast", fast)

        with TransportAdapter(registry) as adapter:
            slow_out, fast_out = Collector(), Collector()
            slow_future = adapter.handle(post("app://slow", {}), slow_out)
            fast_future = adapter.handle(post("app://fast", {}), fast_out)
            slow_future.result(timeout=5)
            fast_future.result(timeout=5)

        assert finished == ["fast", "slow"]
        assert len(slow_out.responses) == 1
        assert len(fast_out.responses) == 1
        assert json.loads(slow_out.responses[0].body) == "slow"
        assert json.loads(fast_out.responses[0].body) == "fast"

    def test_handle_does_not_block_caller(self):
        release = threading.Event()
        registry = CommandRegistry()
        registry.register("block", lambda args: release.wait(5))

        adapter = TransportAdapter(registry)
        try:
            collector = Collector()
            started = time.monotonic()
            future = adapter.handle(post("app://block", {}), collector)
            assert time.monotonic() - started < 1.0
            assert not collector.done.is_set()
            release.set()
            future.result(timeout=5)
            assert collector.wait().body == b"true"
        finally:
            release.set()
            adapter.close(timeout=5)

    @pytest.mark.parametrize("lifted", [False, True])
    def test_blocking_sync_command_does_not_delay_others(self, lifted):
        release = threading.Event()
        registry = CommandRegistry()

        def block(args):
            return release.wait(5)

        def fast(args):
            return "fast"

        if lifted:
            registry.command()(block)
            registry.command()(fast)
        else:
            registry.register("block", block)
            registry.register("fast", fast)

        adapter = TransportAdapter(registry)
        try:
            block_out, fast_out = Collector(), Collector()
            adapter.handle(post("app://block", {}), block_out)
            adapter.handle(post("app://fast", {}), fast_out)
            assert json.loads(fast_out.wait(timeout=1.0).body) == "fast"
            assert not block_out.done.is_set()
            release.set()
            assert block_out.wait().body == b"true"
        finally:
            release.set()
            adapter.close(timeout=5)

    def test_timeout_applies_to_blocking_sync_command(self):
        release = threading.Event()
        registry = CommandRegistry()
        registry.register("block", lambda args: release.wait(5))

        adapter = TransportAdapter(registry, timeout=0.1)
        try:
            collector = Collector()
            started = time.monotonic()
            adapter.handle(post("app://block", {}), collector)
            response = collector.wait(timeout=1.0)
            elapsed = time.monotonic() - started
        finally:
            release.set()
            adapter.close(timeout=5)
        assert json.loads(response.body) == {"error": "Command timed out after 0.1s: block"}
        assert elapsed < 1.0

    def test_max_concurrent_limits_running_handlers(self):
        active = 0
        peak = 0
        registry = CommandRegistry()

        async def work(args):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return args

        registry.register("work", work)
        with TransportAdapter(registry, max_concurrent=2) as adapter:
            futures = [adapter.handle(post("app://work", i), Collector()) for i in range(6)]
            for future in futures:
                future.result(timeout=5)
        assert peak == 2

    def test_invalid_max_concurrent(self):
        with pytest.raises(ValueError):
            TransportAdapter(CommandRegistry(), max_concurrent=0)

    def test_timeout_produces_error_envelope(self):
        registry = CommandRegistry()

        async def slow(args):
            await asyncio.sleep(5)

        registry.register("slow", slow)
        with TransportAdapter(registry, timeout=0.05) as adapter:
            collector = Collector()
            adapter.handle(post("app://slow", {}), collector)
            envelope = json.loads(collector.wait().body)
        assert envelope == {"error": "Command timed out after 0.05s: slow"}


# ============================================================
# Lifecycle and responder
# ============================================================

class TestLifecycle:

    def test_close_cancels_pending(self):
        registry = CommandRegistry()

        async def forever(args):
            await asyncio.sleep(60)

        registry.register("forever", forever)
        adapter = TransportAdapter(registry)
        collector = Collector()
        adapter.handle(post("app://forever", {}), collector)
        assert adapter.in_flight == 1
        adapter.close(cancel_pending=True, timeout=5)
        response = collector.wait()
        assert json.loads(response.body) == {"error": "Command cancelled: forever"}
        assert len(collector.responses) == 1
        assert adapter.in_flight == 0
        assert not adapter.running

    def test_close_without_start_is_noop(self):
        TransportAdapter(CommandRegistry()).close()

    def test_restart_after_close(self, adapter):
        adapter.handle(post("app://greet", {"name": "A"}), Collector()).result(timeout=5)
        adapter.close(timeout=5)
        future = adapter.handle(post("app://greet", {"name": "B"}), Collector())
        assert future.result(timeout=5).status == 200


class TestResponder:

    def test_second_response_rejected(self):
        collector = Collector()
        responder = Responder(collector)
        responder.respond(Response(status=200))
        with pytest.raises(ResponderError):
            responder.respond(Response(status=200))
        assert len(collector.responses) == 1
        assert responder.responded


class TestHelpers:

    def test_parse_body(self):
        assert parse_body(b'{"a": 1}') == {"a": 1}
        assert parse_body(b"") is None
        assert parse_body(b"\xff\xfe garbage") is None

    def test_encode_envelope_compact(self):
        assert encode_envelope({"message": "Hello, Alice!"}) == b'{"message":"Hello, Alice!"}'

    def test_encode_envelope_unicode(self):
        assert encode_envelope({"m": "café"}) == '{"m":"café"}'.encode("utf-8")

    def test_encode_envelope_failure(self):
        assert encode_envelope({"x": object()}) == b""

    def test_handle_async(self):
        adapter = TransportAdapter(build_demo_registry())
        response = asyncio.run(adapter.handle_async(post("app://greet", {"name": "Alice"})))
        assert response.status == 200
        assert response.body == b'{"message":"Hello, Alice!"}'
        assert not adapter.running
