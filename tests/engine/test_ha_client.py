"""Tests for HAClient: REST params and the WebSocket command handshake."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from hachart.engine.collectors.ha_api import HAClient, HAClientError, HistoryAPI, StatisticsAPI
from hachart.engine.config import HAConfig


class FakeResponse:
    def __init__(self, status=200, payload=None, text=""):
        self.status = status
        self._payload = payload
        self._text = text

    async def json(self):
        return self._payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeWebSocket:
    def __init__(self, incoming):
        self.incoming = list(incoming)
        self.sent = []

    async def receive_json(self):
        return self.incoming.pop(0)

    async def send_json(self, data):
        self.sent.append(data)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def _client(response=None, ws=None):
    session = MagicMock()
    session.closed = False
    session.get = MagicMock(return_value=response or FakeResponse(payload=[]))
    session.ws_connect = MagicMock(return_value=ws)
    session.close = AsyncMock()
    config = HAConfig(url="http://ha.local:8123", token="tok")
    return HAClient(config, session=session), session


class TestProtocols:
    def test_client_satisfies_both_protocols(self):
        client, _ = _client()
        assert isinstance(client, HistoryAPI)
        assert isinstance(client, StatisticsAPI)


class TestRest:
    async def test_history_single_filter_param(self):
        client, session = _client(FakeResponse(payload=[[{"entity_id": "sensor.a", "state": "1"}]]))

        hist = await client.query_history_period(
            "2026-01-14T12:00:00.000Z", "2026-01-15T12:00:00.000Z", "sensor.a,sensor.b", minimal_response=True
        )

        assert hist == [[{"entity_id": "sensor.a", "state": "1"}]]
        args, kwargs = session.get.call_args
        assert args[0] == "http://ha.local:8123/api/history/period/2026-01-14T12:00:00.000Z"
        assert kwargs["params"] == {
            "end_time": "2026-01-15T12:00:00.000Z",
            "filter_entity_id": "sensor.a,sensor.b",
            "minimal_response": "1",
        }
        assert kwargs["headers"] == {"Authorization": "Bearer tok"}

    async def test_history_without_minimal_response(self):
        client, session = _client()
        await client.query_history_period("s", "e", "sensor.a")
        assert "minimal_response" not in session.get.call_args.kwargs["params"]

    async def test_error_status_raises(self):
        client, _ = _client(FakeResponse(status=401, text="Unauthorized"))
        with pytest.raises(HAClientError, match="401"):
            await client.fetch_states()

    async def test_injected_session_not_closed(self):
        client, session = _client()
        await client.close()
        session.close.assert_not_awaited()


class TestWebSocketCommands:
    async def test_statistics_handshake_and_result(self):
        ws = FakeWebSocket(
            [
                {"type": "auth_required"},
                {"type": "auth_ok"},
                {"type": "event", "id": 99},
                {"id": 1, "type": "result", "success": True, "result": {"sensor.x": [{"start": 0, "sum": 1}]}},
            ]
        )
        client, _ = _client(ws=ws)

        result = await client.query_statistics("s", "e", ["sensor.x"], "day", ["sum"])

        assert result == {"sensor.x": [{"start": 0, "sum": 1}]}
        assert ws.sent[0] == {"type": "auth", "access_token": "tok"}
        assert ws.sent[1] == {
            "id": 1,
            "type": "recorder/statistics_during_period",
            "start_time": "s",
            "end_time": "e",
            "statistic_ids": ["sensor.x"],
            "period": "day",
            "types": ["sum"],
        }

    async def test_auth_failure(self):
        ws = FakeWebSocket([{"type": "auth_required"}, {"type": "auth_invalid", "message": "bad token"}])
        client, _ = _client(ws=ws)
        with pytest.raises(HAClientError, match="bad token"):
            await client.call_ws({"type": "ping"})

    async def test_command_failure(self):
        ws = FakeWebSocket(
            [
                {"type": "auth_required"},
                {"type": "auth_ok"},
                {"id": 1, "type": "result", "success": False, "error": {"message": "no recorder"}},
            ]
        )
        client, _ = _client(ws=ws)
        with pytest.raises(HAClientError, match="no recorder"):
            await client.query_statistics("s", "e", ["sensor.x"], "day", ["sum"])
