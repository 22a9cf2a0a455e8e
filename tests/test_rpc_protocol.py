"""Tests for RemoteNode, Channel and the RemoteObject proxy.

These run two nodes in one process over real loopback sockets.
"""

import threading

import pytest

from pyremote._internal.rpc_protocol import RemoteNode, RemoteObject
from pyremote._internal.rpc_serialization import ByReference
from pyremote.errors import AddressInUse, RemoteConnectionError, RemoteError

from fixtures.terminal import wait_until


class Counter(ByReference):
    def __init__(self):
        self.count = 0

    def increment(self, by=1):
        self.count += by
        return self.count


class Service:
    name = "service"

    def __init__(self):
        self.value = None
        self.counter = Counter()
        self._secret = "hidden"

    def ping(self):
        return "pong"

    def echo(self, obj):
        return obj

    def apply(self, func, *args):
        return func(*args)

    def get_counter(self):
        return self.counter

    def fail(self):
        raise ValueError("boom")

    def __call__(self, x):
        return x * 2


@pytest.fixture
def service():
    return Service()


@pytest.fixture
def server(service):
    node = RemoteNode()
    node.publish(("127.0.0.1", 0), service)
    yield node
    node.shutdown()


@pytest.fixture
def client():
    node = RemoteNode()
    yield node
    node.shutdown()


@pytest.fixture
def proxy(server, client):
    return client.resolve(server.uri)


class TestNodeLifecycle:
    """Binding, resolving and shutting down nodes."""

    def test_second_listener_on_same_port_is_address_in_use(self, free_port):
        first, second = RemoteNode(), RemoteNode()
        try:
            first.start("127.0.0.1", free_port)
            with pytest.raises(AddressInUse) as exc_info:
                second.start("127.0.0.1", free_port)
            assert exc_info.value.port == free_port
            assert isinstance(exc_info.value, OSError)
        finally:
            first.shutdown()
            second.shutdown()

    def test_failed_publish_leaves_no_root(self, free_port):
        first, second = RemoteNode(), RemoteNode()
        try:
            first.start("127.0.0.1", free_port)
            with pytest.raises(AddressInUse):
                second.publish(("127.0.0.1", free_port), Service())
            with pytest.raises(LookupError):
                second.lookup("root")
        finally:
            first.shutdown()
            second.shutdown()

    def test_start_reports_bound_port(self):
        node = RemoteNode()
        try:
            uri = node.start("127.0.0.1", 0)
            assert uri.startswith("pyremote://127.0.0.1:")
            assert not uri.endswith(":0")
        finally:
            node.shutdown()

    def test_resolve_is_lazy(self, client, free_port):
        """Nothing is dialled until the first call."""
        proxy = client.resolve(f"pyremote://127.0.0.1:{free_port}")

        assert isinstance(proxy, RemoteObject)
        with pytest.raises(RemoteConnectionError):
            proxy.ping()

    def test_resolve_rejects_bad_uri(self, client):
        with pytest.raises(ValueError):
            client.resolve("http://127.0.0.1:1")

    def test_shutdown_is_idempotent(self, client):
        client.start("127.0.0.1", 0)
        client.shutdown()
        client.shutdown()

        assert client.stopping
        with pytest.raises(RuntimeError):
            client.start("127.0.0.1", 0)

    def test_register_callee_rejects_duplicate_ids(self, client):
        client.register_callee(object(), "thing")
        with pytest.raises(ValueError, match="already registered"):
            client.register_callee(object(), "thing")


class TestRemoteCalls:
    """Method calls, attribute writes and errors through a proxy."""

    def test_method_returns_value(self, proxy):
        assert proxy.ping() == "pong"

    def test_copied_values_round_trip(self, proxy):
        assert proxy.echo({"a": [1, 2], "b": b"raw"}) == {"a": [1, 2], "b": b"raw"}

    def test_plain_attribute_read(self, proxy):
        assert proxy.name() == "service"

    def test_attribute_assignment_is_forwarded(self, proxy, service):
        proxy.value = 42

        assert service.value == 42

    def test_call_is_forwarded(self, proxy):
        assert proxy(21) == 42

    def test_private_names_are_rejected_locally(self, proxy):
        with pytest.raises(AttributeError):
            proxy._secret  # noqa: B018
        with pytest.raises(AttributeError):
            proxy._secret = "x"

    def test_private_names_are_rejected_remotely(self, client, proxy, service):
        with pytest.raises(RemoteError) as exc_info:
            client.invoke(proxy, "_secret", (), {})
        assert exc_info.value.is_missing_method
        assert service._secret == "hidden"

    def test_missing_method(self, proxy):
        with pytest.raises(RemoteError) as exc_info:
            proxy.does_not_exist()
        assert exc_info.value.is_missing_method
        assert exc_info.value.remote_type_name == "AttributeError"

    def test_remote_exception_propagates(self, proxy):
        with pytest.raises(RemoteError) as exc_info:
            proxy.fail()
        assert exc_info.value.remote_type_name == "ValueError"
        assert exc_info.value.remote_message == "boom"
        assert not exc_info.value.is_missing_method
        assert "ValueError" in exc_info.value.remote_traceback

    def test_unserializable_argument_fails_before_sending(self, proxy):
        class Opaque:
            pass

        with pytest.raises(TypeError):
            proxy.echo(Opaque())
        assert proxy.ping() == "pong"


class TestReferences:
    """By-reference values, callbacks and identity."""

    def test_by_reference_result_is_a_proxy(self, proxy, service):
        counter = proxy.get_counter()

        assert isinstance(counter, RemoteObject)
        assert counter.increment(5) == 5
        assert service.counter.count == 5

    def test_proxies_are_cached(self, proxy):
        assert proxy.get_counter() is proxy.get_counter()

    def test_identity_survives_round_trip(self, proxy):
        counter = Counter()

        assert proxy.echo(counter) is counter

    def test_callable_argument_calls_back(self, proxy):
        seen = []

        def record(value):
            seen.append(threading.current_thread().name)
            return value + 1

        assert proxy.apply(record, 1) == 2
        assert len(seen) == 1

    def test_nested_callbacks(self, proxy):
        """A callback may itself call the peer while the outer call is pending."""
        assert proxy.apply(lambda: proxy.ping()) == "pong"


class TestDisconnects:
    """Behaviour when the peer goes away."""

    def test_call_after_peer_shutdown_is_connection_error(self, server, proxy):
        assert proxy.ping() == "pong"
        server.shutdown()

        with pytest.raises(ConnectionError):
            proxy.ping()

    def test_disconnect_callback_fires(self, server, client, proxy):
        dropped = []
        client.on_disconnect(dropped.append)
        assert proxy.ping() == "pong"

        server.shutdown()

        assert wait_until(lambda: len(dropped) == 1)

    def test_no_callbacks_during_own_shutdown(self, client, proxy):
        dropped = []
        client.on_disconnect(dropped.append)
        assert proxy.ping() == "pong"

        client.shutdown()

        assert dropped == []
