"""Tests for the caller-facing VPNClient."""

import asyncio

import pytest

from ovpn3_core.client import VPNClient
from ovpn3_core.constants import CONFIG_ROOT_PATH, SESSIONS_ROOT_PATH
from ovpn3_core.errors import RetryExhausted, RpcError, SessionFetchError
from ovpn3_core.models import ImportRequest
from ovpn3_core.results import ErrorKind
from ovpn3_core.retry import RetrySpec
from ovpn3_core.settings import Settings
from tests.conftest import rpc_error

CFG = "/net/openvpn/v3/configuration/c1"
SESS_1 = "/net/openvpn/v3/sessions/s1"
SESS_2 = "/net/openvpn/v3/sessions/s2"


@pytest.fixture
def client(bus, sleep):
    settings = Settings(
        fetch_retry=RetrySpec(4, 2.0),
        remove_retry=RetrySpec(3, 2.0),
        ready_retry=RetrySpec(3, 3.0),
    )
    return VPNClient(bus, settings, url_opener=lambda url: True, sleep=sleep)


class TestConfigOperations:
    """Tests for configuration requests."""

    @pytest.mark.asyncio
    async def test_empty_list_is_success(self, bus, client):
        bus.on_call(CONFIG_ROOT_PATH, "FetchAvailableConfigs", [])

        result = await client.list_configs()

        assert result.success
        assert result.value == []

    @pytest.mark.asyncio
    async def test_list_retries_then_succeeds(self, bus, sleep, client):
        bus.on_call(
            CONFIG_ROOT_PATH,
            "FetchAvailableConfigs",
            rpc_error("FetchAvailableConfigs"),
            rpc_error("FetchAvailableConfigs"),
            [CFG],
        )
        bus.on_property(CFG, "name", "office")
        bus.on_property(CFG, "used_count", 2)

        result = await client.list_configs()

        assert result.success
        assert [c.name for c in result.value] == ["office"]
        assert sleep.delays == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_list_failure_is_distinguishable_from_empty(self, bus, sleep, client):
        """Test that a failed listing is not reported as an empty one."""
        bus.on_call(CONFIG_ROOT_PATH, "FetchAvailableConfigs", rpc_error("FetchAvailableConfigs"))

        result = await client.list_configs()

        assert not result.success
        assert result.value is None
        assert result.error_kind == ErrorKind.RETRY_EXHAUSTED
        assert isinstance(result.error, RetryExhausted)
        assert len(bus.methods("FetchAvailableConfigs")) == 4
        assert sleep.delays == [2.0, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_import_is_not_retried(self, bus, sleep, client, tmp_path):
        path = tmp_path / "office.ovpn"
        path.write_text("client\n")
        bus.on_call(CONFIG_ROOT_PATH, "Import", rpc_error("Import"))

        result = await client.import_config(ImportRequest("office", str(path)))

        assert result.error_kind == ErrorKind.IMPORT
        assert len(bus.methods("Import")) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_import_missing_file(self, client, tmp_path):
        result = await client.import_config(ImportRequest("office", str(tmp_path / "nope")))
        assert result.error_kind == ErrorKind.FILE_READ

    @pytest.mark.asyncio
    async def test_remove_retries(self, bus, sleep, client):
        bus.on_call(CFG, "Remove", rpc_error("Remove", CFG), None)

        result = await client.remove_config(CFG)

        assert result.success
        assert len(bus.methods("Remove")) == 2
        assert sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_remove_invalid_path_is_not_retried(self, bus, sleep, client):
        result = await client.remove_config("office")

        assert result.error_kind == ErrorKind.INVALID_REQUEST
        assert bus.calls == []
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_malformed_config_properties_become_result(self, bus, sleep, client):
        bus.on_call(CONFIG_ROOT_PATH, "FetchAvailableConfigs", [CFG])
        bus.on_property(CFG, "name", "office")
        bus.on_property(CFG, "used_count", None)

        result = await client.list_configs()

        assert result.error_kind == ErrorKind.RETRY_EXHAUSTED
        assert isinstance(result.error.last_error, RpcError)


class TestSessionOperations:
    """Tests for session requests."""

    @pytest.mark.asyncio
    async def test_new_tunnel(self, bus, client):
        bus.on_call(SESSIONS_ROOT_PATH, "NewTunnel", SESS_1)
        bus.on_call(SESS_1, "Ready", None)
        bus.on_call(SESS_1, "LogForward", None)
        bus.on_property(SESS_1, "log_forwards", [])

        result = await client.new_tunnel(CFG)

        assert result.success
        assert result.value == SESS_1

    @pytest.mark.asyncio
    async def test_new_tunnel_failure(self, bus, client):
        bus.on_call(SESSIONS_ROOT_PATH, "NewTunnel", rpc_error("NewTunnel"))

        result = await client.new_tunnel(CFG)

        assert result.error_kind == ErrorKind.TUNNEL
        assert result.to_dict()["success"] is False

    @pytest.mark.asyncio
    async def test_list_sessions_failure(self, bus, sleep, client):
        bus.on_call(SESSIONS_ROOT_PATH, "FetchAvailableSessions", rpc_error("FetchAvailableSessions"))

        result = await client.list_sessions()

        assert result.error_kind == ErrorKind.RETRY_EXHAUSTED
        assert isinstance(result.error.last_error, SessionFetchError)
        assert isinstance(result.error.last_error.__cause__, RpcError)
        assert len(bus.methods("FetchAvailableSessions")) == 4

    @pytest.mark.asyncio
    async def test_disconnect_all_reports_partial_failure(self, bus, client):
        bus.on_call(SESSIONS_ROOT_PATH, "FetchAvailableSessions", [SESS_1, SESS_2])
        bus.on_call(SESS_1, "Disconnect", rpc_error("Disconnect", SESS_1))
        bus.on_call(SESS_2, "Disconnect", None)

        result = await client.disconnect_all()

        assert result.success
        assert result.value.disconnected == [SESS_2]
        assert list(result.value.failed) == [SESS_1]
        assert result.to_dict()["result"]["failed"][SESS_1].startswith("Disconnect failed")

    @pytest.mark.asyncio
    async def test_has_session(self, bus, client):
        bus.on_call(SESSIONS_ROOT_PATH, "FetchAvailableSessions", [SESS_1])

        result = await client.has_session()

        assert result.success and result.value is True


class TestLogDelivery:
    """Tests for log subscriptions and callbacks."""

    @pytest.mark.asyncio
    async def test_on_log_callback(self, bus, client):
        received = []
        observer = client.on_log(lambda *args: received.append(args))
        client.start()

        bus.emit(SESS_1, "Log", 7, 4, "Initialization Sequence Completed")
        for _ in range(50):
            if received:
                break
            await asyncio.sleep(0)
        observer.close()
        await asyncio.wait_for(observer.wait_closed(), 1)
        await client.close()

        assert received == [(SESS_1, "Log", 7, 4, "Initialization Sequence Completed")]

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_delivering(self, bus, client):
        received = []

        def callback(path, member, group, level, message):
            received.append(message)
            raise RuntimeError("observer bug")

        observer = client.on_log(callback)
        client.start()

        bus.emit(SESS_1, "Log", 7, 4, "one")
        bus.emit(SESS_1, "Log", 7, 4, "two")
        for _ in range(50):
            if len(received) == 2:
                break
            await asyncio.sleep(0)
        await client.close()
        await asyncio.wait_for(observer.wait_closed(), 1)

        assert received == ["one", "two"]

    @pytest.mark.asyncio
    async def test_close_ends_subscriptions(self, client):
        subscription = client.subscribe_logs()
        client.start()

        await client.close()

        assert await subscription.get() is None
