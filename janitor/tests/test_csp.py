"""Tests for CSP actuator deadline handling, registry, and the kind provider."""

import asyncio
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, NotFound

from janitor.config import settings
from janitor.csp import (
    CSPClient,
    KindCSPClient,
    call_with_timeout,
    create_csp_client,
    get_csp_client,
    list_csp_clients,
    register_csp_client,
    reset_csp_client,
)
from janitor.csp.registry import LazySingleton
from janitor.errors import CSPError, CSPTimeoutError, ErrorKind, error_kind
from janitor.models import Node
from janitor.tests.fakes import FakeCSPClient

NODE = Node(name="kind-worker", ready=True)


# --- call_with_timeout ---

class TestCallWithTimeout:
    """Deadline expiry must be distinguishable from other failures."""

    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def ok():
            return "ref-1"

        assert await call_with_timeout(ok(), operation="SendRebootSignal", node_name="n1") == "ref-1"

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self):
        async def stall():
            await asyncio.sleep(10)

        with pytest.raises(CSPTimeoutError) as exc_info:
            await call_with_timeout(stall(), operation="IsNodeReady", node_name="n1", timeout=0.01)

        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert exc_info.value.operation == "IsNodeReady"
        assert exc_info.value.timeout == 0.01

    @pytest.mark.asyncio
    async def test_provider_timeout_is_timeout(self):
        async def provider_deadline():
            raise TimeoutError("provider deadline exceeded")

        with pytest.raises(CSPTimeoutError):
            await call_with_timeout(provider_deadline(), operation="IsNodeReady", node_name="n1")

    @pytest.mark.asyncio
    async def test_other_errors_are_permanent(self):
        async def fail():
            raise RuntimeError("access denied")

        with pytest.raises(CSPError) as exc_info:
            await call_with_timeout(fail(), operation="SendRebootSignal", node_name="n1")

        assert not isinstance(exc_info.value, CSPTimeoutError)
        assert exc_info.value.kind == ErrorKind.PERMANENT
        assert str(exc_info.value) == "access denied"
        assert exc_info.value.node_name == "n1"

    @pytest.mark.asyncio
    async def test_csp_errors_pass_through(self):
        original = CSPError("no such instance", operation="GetInstance", node_name="n1")

        async def fail():
            raise original

        with pytest.raises(CSPError) as exc_info:
            await call_with_timeout(fail(), operation="SendRebootSignal", node_name="n1")

        assert exc_info.value is original


def test_error_kind_classification():
    assert error_kind(CSPTimeoutError("t")) == ErrorKind.TIMEOUT
    assert error_kind(CSPError("e")) == ErrorKind.PERMANENT
    assert error_kind(asyncio.TimeoutError()) == ErrorKind.TIMEOUT
    assert error_kind(ValueError("x")) == ErrorKind.TRANSIENT


# --- Registry ---

class TestRegistry:
    """Tests for provider selection."""

    def setup_method(self):
        reset_csp_client()

    def teardown_method(self):
        reset_csp_client()

    def test_kind_is_registered(self):
        assert "kind" in list_csp_clients()
        assert isinstance(create_csp_client("KIND"), KindCSPClient)

    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError, match="Unsupported CSP provider"):
            create_csp_client("nope")

    def test_register_custom_provider(self, monkeypatch):
        register_csp_client("fake", FakeCSPClient)
        monkeypatch.setattr(settings, "csp_provider", "fake")

        client = get_csp_client()

        assert isinstance(client, CSPClient)
        assert client.name == "fake"
        assert get_csp_client() is client

    def test_reset_builds_a_new_client(self, monkeypatch):
        register_csp_client("fake", FakeCSPClient)
        monkeypatch.setattr(settings, "csp_provider", "fake")
        first = get_csp_client()

        reset_csp_client()

        assert get_csp_client() is not first

    def test_lazy_singleton_builds_on_first_get(self):
        built = []
        singleton = LazySingleton(lambda: built.append(1) or object())

        assert built == []
        assert singleton.get() is singleton.get()
        assert built == [1]


# --- KindCSPClient ---

class TestKindCSPClient:
    """Tests for the Docker-backed kind actuator."""

    def _client(self, container=None, get_error=None):
        docker_client = MagicMock()
        if get_error is not None:
            docker_client.containers.get.side_effect = get_error
        else:
            docker_client.containers.get.return_value = container
        return KindCSPClient(docker_client=docker_client), docker_client

    @pytest.mark.asyncio
    async def test_send_restarts_container(self):
        container = MagicMock()
        container.short_id = "abc123def456"
        client, docker_client = self._client(container)

        ref = await client.send_reboot_signal(NODE)

        docker_client.containers.get.assert_called_once_with("kind-worker")
        container.restart.assert_called_once_with(timeout=10)
        assert ref.startswith("abc123def456@")

    @pytest.mark.asyncio
    async def test_send_missing_container(self):
        client, _ = self._client(get_error=NotFound("no such container"))

        with pytest.raises(CSPError, match="No container backs node kind-worker"):
            await client.send_reboot_signal(NODE)

    @pytest.mark.asyncio
    async def test_send_restart_failure(self):
        container = MagicMock()
        container.restart.side_effect = APIError("daemon error")
        client, _ = self._client(container)

        with pytest.raises(CSPError, match="Container restart failed"):
            await client.send_reboot_signal(NODE)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,expected", [("running", True), ("restarting", False), ("exited", False)])
    async def test_is_node_ready_from_container_status(self, status, expected):
        container = MagicMock()
        container.status = status
        client, _ = self._client(container)

        assert await client.is_node_ready(NODE, "abc@2025") is expected
        container.reload.assert_called_once()
