"""
Tests for the Slack dispatch transport

Slack's Web API is served by httpx.MockTransport.
"""

import json
import os
import pytest
import httpx
from unittest.mock import patch

from attention.common.config import SlackTarget
from attention.common.schemas import (
    DispatchPayload,
    DispatchRequest,
    EscalationLevel,
    EventDescriptor,
    FollowUpAction,
)
from attention.pipeline.transports import SlackAPIError, SlackTransport


def make_request(channel="slack", **payload):
    data = {
        "summary": "whoop recovery: urgency 9.0/10 (high relevance)",
        "escalation_level": EscalationLevel.URGENT,
        "context": {"calendar": "3 meetings", "hrv": {"drop": 38}},
        "event": EventDescriptor(source="whoop", kind="recovery", received_at="2026-10-17T06:30:00+00:00"),
        "follow_up_actions": [FollowUpAction(label="Move workout", tool="calendar.move")],
    }
    data.update(payload)
    return DispatchRequest(channel=channel, payload=DispatchPayload(**data))


class SlackAPI:
    """Records chat.postMessage calls"""

    def __init__(self, reply=None, status=200):
        self.calls = []
        self._reply = reply if reply is not None else {"ok": True, "ts": "1697530200.000100"}
        self._status = status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        return httpx.Response(self._status, json=self._reply)


@pytest.fixture
def slack_env():
    with patch.dict(os.environ, {"SLACK_BOT_TOKEN": "xoxb-shared"}, clear=True):
        yield


class TestSend:
    @pytest.mark.asyncio
    async def test_posts_message(self, tmp_path, slack_env):
        api = SlackAPI()
        async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
            transport = SlackTransport(
                SlackTarget(channel_id="C123", thread_ts="1697.1"), data_dir=tmp_path, http_client=client,
            )
            result = await transport.send(make_request())

        assert result.delivered is True
        assert result.message_id == "1697530200.000100"
        assert result.channel == "slack"

        request = api.calls[0]
        assert str(request.url) == "https://slack.com/api/chat.postMessage"
        assert request.headers["authorization"] == "Bearer xoxb-shared"
        body = json.loads(request.content)
        assert body["channel"] == "C123"
        assert body["thread_ts"] == "1697.1"
        assert body["unfurl_links"] is False
        assert body["text"].startswith("whoop recovery")
        assert body["blocks"][0]["type"] == "section"

    @pytest.mark.asyncio
    async def test_no_channel_configured(self, tmp_path, slack_env):
        result = await SlackTransport(SlackTarget(), data_dir=tmp_path).send(make_request())
        assert result.delivered is False
        assert result.error == "slack_not_configured"

        result = await SlackTransport(None, data_dir=tmp_path).send(make_request())
        assert result.error == "slack_not_configured"

    @pytest.mark.asyncio
    async def test_wrong_channel_name(self, tmp_path, slack_env):
        transport = SlackTransport(SlackTarget(channel_id="C123"), data_dir=tmp_path)
        result = await transport.send(make_request(channel="sms"))
        assert result.error == "unsupported_channel"

    @pytest.mark.asyncio
    async def test_no_token(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            transport = SlackTransport(SlackTarget(channel_id="C123"), data_dir=tmp_path)
            result = await transport.send(make_request())
        assert result.delivered is False
        assert result.error == "slack_token_unavailable"

    @pytest.mark.asyncio
    async def test_api_error_raises(self, tmp_path, slack_env):
        api = SlackAPI(reply={"ok": False, "error": "channel_not_found"})
        async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
            transport = SlackTransport(SlackTarget(channel_id="C404"), data_dir=tmp_path, http_client=client)
            with pytest.raises(SlackAPIError, match="channel_not_found"):
                await transport.send(make_request())

    @pytest.mark.asyncio
    async def test_http_error_raises(self, tmp_path, slack_env):
        api = SlackAPI(reply={"ok": False}, status=503)
        async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
            transport = SlackTransport(SlackTarget(channel_id="C123"), data_dir=tmp_path, http_client=client)
            with pytest.raises(httpx.HTTPStatusError):
                await transport.send(make_request())


class TestTokenResolution:
    def test_dedicated_env_wins(self, tmp_path):
        env = {"ATTENTION_SLACK_BOT_TOKEN": "xoxb-dedicated", "SLACK_USER_TOKEN": "xoxp-shared"}
        with patch.dict(os.environ, env, clear=True):
            assert SlackTransport(SlackTarget(channel_id="C1"), data_dir=tmp_path).resolve_token() == "xoxb-dedicated"

    def test_user_token_before_bot_token(self, tmp_path):
        env = {"SLACK_BOT_TOKEN": "xoxb", "SLACK_USER_TOKEN": "xoxp"}
        with patch.dict(os.environ, env, clear=True):
            assert SlackTransport(SlackTarget(channel_id="C1"), data_dir=tmp_path).resolve_token() == "xoxp"

    def test_tokens_file_object(self, tmp_path):
        transport = SlackTransport(SlackTarget(channel_id="C1"), data_dir=tmp_path)
        transport.tokens_path.parent.mkdir(parents=True)
        transport.tokens_path.write_text(json.dumps({"botToken": "xoxb-file"}))
        with patch.dict(os.environ, {"SLACK_BOT_TOKEN": "xoxb-shared"}, clear=True):
            assert transport.resolve_token() == "xoxb-file"

    def test_tokens_file_string(self, tmp_path):
        transport = SlackTransport(SlackTarget(channel_id="C1"), data_dir=tmp_path)
        transport.tokens_path.parent.mkdir(parents=True)
        transport.tokens_path.write_text(json.dumps("xoxp-file"))
        with patch.dict(os.environ, {}, clear=True):
            assert transport.resolve_token() == "xoxp-file"

    def test_unreadable_tokens_file_falls_through(self, tmp_path):
        transport = SlackTransport(SlackTarget(channel_id="C1"), data_dir=tmp_path)
        transport.tokens_path.parent.mkdir(parents=True)
        transport.tokens_path.write_text("{oops")
        with patch.dict(os.environ, {"SLACK_BOT_TOKEN": "xoxb-shared"}, clear=True):
            assert transport.resolve_token() == "xoxb-shared"

    def test_dedicated_required_blocks_shared(self, tmp_path):
        target = SlackTarget(channel_id="C1", use_dedicated_token=True)
        with patch.dict(os.environ, {"SLACK_BOT_TOKEN": "xoxb-shared"}, clear=True):
            assert SlackTransport(target, data_dir=tmp_path).resolve_token() is None

    def test_tokens_file_read_once(self, tmp_path):
        transport = SlackTransport(SlackTarget(channel_id="C1"), data_dir=tmp_path)
        transport.tokens_path.parent.mkdir(parents=True)
        transport.tokens_path.write_text(json.dumps({"userToken": "xoxp-first"}))

        with patch.dict(os.environ, {}, clear=True):
            assert transport.resolve_token() == "xoxp-first"
            transport.tokens_path.write_text(json.dumps({"userToken": "xoxp-second"}))
            with patch("builtins.open") as mock_open:
                assert transport.resolve_token() == "xoxp-first"
            mock_open.assert_not_called()


class TestBuildMessage:
    def test_blocks_layout(self, tmp_path):
        transport = SlackTransport(SlackTarget(channel_id="C1", mention_user_id="U42"), data_dir=tmp_path)
        fallback, blocks = transport.build_message(make_request())

        assert blocks[0]["text"]["text"] == "<@U42> *whoop recovery: urgency 9.0/10 (high relevance)*"
        assert "URGENT" in blocks[1]["elements"][0]["text"]
        assert "*calendar*: 3 meetings" in blocks[2]["text"]["text"]
        assert '*hrv*: {"drop": 38}' in blocks[2]["text"]["text"]
        assert "Move workout _(tool: calendar.move)_" in blocks[3]["text"]["text"]
        assert "Source: *whoop*" in blocks[4]["elements"][0]["text"]

        assert "*" not in fallback
        assert "Escalation level: URGENT" in fallback
        assert "Follow-ups:" in fallback

    def test_suppressed_mentions(self, tmp_path):
        target = SlackTarget(channel_id="C1", mention_user_id="U42", suppress_mentions=True)
        _, blocks = SlackTransport(target, data_dir=tmp_path).build_message(make_request())
        assert "<@U42>" not in blocks[0]["text"]["text"]

    def test_minimal_payload(self, tmp_path):
        request = DispatchRequest(channel="slack")
        fallback, blocks = SlackTransport(SlackTarget(channel_id="C1"), data_dir=tmp_path).build_message(request)
        assert fallback == "Attention alert"
        assert len(blocks) == 1
