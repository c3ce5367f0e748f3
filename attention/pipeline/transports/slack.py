"""
Slack Transport

Delivers dispatch requests to the configured Slack channel via
chat.postMessage, rendered as Block Kit with a plain-text fallback.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ...common.config import SlackTarget, default_data_dir
from ...common.schemas import DispatchRequest, DispatchResult

logger = logging.getLogger("attention.pipeline.transports.slack")

SLACK_API_URL = "https://slack.com/api"
SLACK_CHANNEL = "slack"

DEDICATED_TOKEN_ENV = ("ATTENTION_SLACK_USER_TOKEN", "ATTENTION_SLACK_BOT_TOKEN")
SHARED_TOKEN_ENV = ("SLACK_USER_TOKEN", "SLACK_BOT_TOKEN")


class SlackAPIError(Exception):
    """Slack answered with ok=false"""

    def __init__(self, method: str, error: str):
        super().__init__(f"Slack API error ({method}): {error}")
        self.method = method
        self.error = error


class SlackTransport:
    """
    Transport for the ``slack`` channel.

    Configuration problems (no channel, no token, wrong channel name) are
    reported as undelivered results. API failures raise, so the dispatch
    manager records them.
    """

    def __init__(
        self,
        target: Optional[SlackTarget],
        data_dir: Optional[Path] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """
        Args:
            target: Slack dispatch target from the attention config
            data_dir: Gateway data directory holding attention/slack/tokens.json
            http_client: Shared client (a per-call client is used otherwise)
            timeout: Slack API request timeout in seconds
        """
        self._target = target
        self._data_dir = Path(data_dir) if data_dir else default_data_dir()
        self._http_client = http_client
        self._timeout = timeout
        self._file_token: Optional[str] = None
        self._file_token_loaded = False

    @property
    def tokens_path(self) -> Path:
        return self._data_dir / "attention" / "slack" / "tokens.json"

    async def send(self, request: DispatchRequest) -> DispatchResult:
        if not self._target or not self._target.channel_id:
            logger.warning("Slack dispatch requested but no channel configured")
            return DispatchResult(channel=request.channel, delivered=False, error="slack_not_configured")

        if request.channel != SLACK_CHANNEL:
            return DispatchResult(channel=request.channel, delivered=False, error="unsupported_channel")

        token = self.resolve_token()
        if not token:
            return DispatchResult(channel=request.channel, delivered=False, error="slack_token_unavailable")

        fallback, blocks = self.build_message(request)
        body: Dict[str, Any] = {
            "channel": self._target.channel_id,
            "text": fallback,
            "blocks": blocks,
            "unfurl_links": False,
            "unfurl_media": False,
        }
        if self._target.thread_ts:
            body["thread_ts"] = self._target.thread_ts

        response = await self._call(token, "chat.postMessage", body)
        return DispatchResult(channel=request.channel, delivered=True, message_id=response.get("ts"))

    async def _call(self, token: str, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{SLACK_API_URL}/{method}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json; charset=utf-8",
        }
        if self._http_client is not None:
            response = await self._http_client.post(url, json=body, headers=headers, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout)) as client:
                response = await client.post(url, json=body, headers=headers)

        response.raise_for_status()
        data = response.json()
        if not data.get("ok"):
            raise SlackAPIError(method, data.get("error") or "unknown_error")
        return data

    # =========================================================================
    # Token resolution
    # =========================================================================

    def resolve_token(self) -> Optional[str]:
        """
        Token lookup order:
        1. ATTENTION_SLACK_USER_TOKEN / ATTENTION_SLACK_BOT_TOKEN
        2. <data_dir>/attention/slack/tokens.json
        3. SLACK_USER_TOKEN / SLACK_BOT_TOKEN, unless a dedicated token is required
        """
        dedicated = self._resolve_dedicated_token()
        if dedicated:
            return dedicated

        if self._target and self._target.use_dedicated_token:
            logger.error("Dedicated attention Slack token required but not configured")
            return None

        for env_var in SHARED_TOKEN_ENV:
            token = os.getenv(env_var)
            if token:
                return token

        logger.error("No Slack token available for attention dispatch")
        return None

    def _resolve_dedicated_token(self) -> Optional[str]:
        for env_var in DEDICATED_TOKEN_ENV:
            token = os.getenv(env_var)
            if token:
                return token

        if not self._file_token_loaded:
            self._file_token = self._read_tokens_file()
            self._file_token_loaded = True
        return self._file_token

    def _read_tokens_file(self) -> Optional[str]:
        """Read once per transport; restart or rewire to pick up a new file"""
        path = self.tokens_path
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                parsed = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read dedicated attention Slack token file %s: %s", path, e)
            return None

        if isinstance(parsed, str):
            return parsed or None
        if isinstance(parsed, dict):
            return parsed.get("userToken") or parsed.get("botToken") or None
        return None

    # =========================================================================
    # Rendering
    # =========================================================================

    def build_message(self, request: DispatchRequest) -> Tuple[str, List[Dict[str, Any]]]:
        """Render (fallback text, blocks) for a request"""
        payload = request.payload
        summary = payload.summary or "Attention alert"

        escalation = None
        if payload.escalation_level is not None:
            escalation = f":warning: Escalation level: *{payload.escalation_level.value.upper()}*"

        context_lines = []
        for key, value in payload.context.items():
            text = value if isinstance(value, str) else json.dumps(value, default=str)
            context_lines.append(f"• *{key}*: {text}")

        follow_ups = []
        for action in payload.follow_up_actions:
            line = f"• {action.label}"
            if action.tool:
                line += f" _(tool: {action.tool})_"
            follow_ups.append(line)

        mention = ""
        if self._target and self._target.mention_user_id and not self._target.suppress_mentions:
            mention = f"<@{self._target.mention_user_id}> "

        fallback_parts = [summary]
        if escalation:
            fallback_parts.append(_strip_markup(escalation))
        if context_lines:
            fallback_parts.append("\n".join(_strip_markup(line) for line in context_lines))
        if follow_ups:
            fallback_parts.append("Follow-ups:\n" + "\n".join(_strip_markup(line) for line in follow_ups))

        blocks: List[Dict[str, Any]] = [
            {"type": "section", "text": {"type": "mrkdwn", "text": f"{mention}*{summary}*"}},
        ]
        if escalation:
            blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": escalation}]})
        if context_lines:
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(context_lines)}})
        if follow_ups:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": "*Suggested actions*\n" + "\n".join(follow_ups)},
            })
        if payload.event is not None:
            e = payload.event
            blocks.append({
                "type": "context",
                "elements": [{
                    "type": "mrkdwn",
                    "text": f"Source: *{e.source}* • Kind: *{e.kind}* • Received: {e.received_at}",
                }],
            })

        return "\n".join(fallback_parts), blocks


def _strip_markup(text: str) -> str:
    return re.sub(r"[*_]", "", text)
