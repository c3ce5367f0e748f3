"""
Classification Backends

Two interchangeable ways of asking a model to score an attention event:

- ResponsesBackend ("codex"): structured-response protocol. POSTs a
  system/user prompt pair with a JSON-schema response format and guardrail
  settings to ``<base_url>/responses``.
- ChatBackend ("ollama"): plain chat protocol. POSTs a chat request to
  ``<base_url>/api/chat`` and parses best-effort JSON from the reply.

Both share one contract: ``classify(event)`` returns a ClassificationResult
or None, and never raises.
"""

from __future__ import annotations

import json
import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..common.config import GuardrailConfig
from ..common.llm_utils import extract_json_block
from ..common.schemas import AttentionEvent, ClassificationResult

logger = logging.getLogger("attention.pipeline.backends")

PROVIDER_CODEX = "codex"
PROVIDER_OLLAMA = "ollama"

DEFAULT_CODEX_BASE_URL = "https://api.openai.com/v1"
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_CODEX_MODEL = "o4-mini"
DEFAULT_OLLAMA_MODEL = "gpt-oss:20b"


CODEX_SYSTEM_PROMPT = (
    "You are a non-interactive Codex classifier. Obey the guardrails. "
    "Only return JSON matching the schema. Use conservative scoring when uncertain."
)

CODEX_INSTRUCTIONS = (
    "Derive urgency (0-10), relevance tier, filter boolean, rationales, "
    "context snippets (if safe)."
)

CHAT_SYSTEM_PROMPT = (
    "You are a classification service. Return a strict JSON object with "
    "urgency_score (0-10), relevance (none|low|medium|high), filtered (boolean), "
    "reasons (array of strings), optional context object, and optional tags array. "
    "No extra text."
)

CHAT_INSTRUCTIONS = (
    "Assess urgency, relevance, and provide concise reasons. Mark filtered=true "
    "only when the event should be silently ignored."
)

CLASSIFICATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "urgency_score": {"type": "number", "minimum": 0, "maximum": 10},
        "relevance": {"type": "string", "enum": ["none", "low", "medium", "high"]},
        "filtered": {"type": "boolean"},
        "reasons": {"type": "array", "items": {"type": "string"}},
        "context": {"type": "object", "additionalProperties": True},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["urgency_score", "relevance", "filtered", "reasons"],
    "additionalProperties": False,
}


class ClassificationBackend(ABC):
    """
    Base class for classification providers.

    Subclasses implement ``_request`` to perform the provider call and return
    the model's reply text. Key checks, error handling and response parsing
    live here so both protocols fail the same way.
    """

    provider: str = ""

    def __init__(
        self,
        model: str,
        base_url: str,
        api_key: Optional[str] = None,
        require_api_key: bool = False,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key or None
        self._require_api_key = require_api_key
        self._timeout = timeout
        self._http_client = http_client

    @property
    def version(self) -> str:
        return f"{self.provider}-{self.model}"

    @property
    def is_configured(self) -> bool:
        if self._require_api_key:
            return self._api_key is not None
        return True

    async def classify(self, event: AttentionEvent) -> Optional[ClassificationResult]:
        """
        Score an event.

        Returns None (classification unavailable) when the backend is not
        configured, the request fails or times out, or the reply cannot be
        parsed.
        """
        if not self.is_configured:
            logger.warning("%s classification skipped: API key required but not configured", self.provider)
            return None

        try:
            text = await self._request(event)
        except httpx.TimeoutException as e:
            logger.warning("%s classification request timed out after %.1fs: %s", self.provider, self._timeout, e)
            return None
        except Exception as e:
            logger.error("%s classification request threw error: %s", self.provider, e)
            return None

        if text is None:
            return None
        return self.parse_classification(text)

    @abstractmethod
    async def _request(self, event: AttentionEvent) -> Optional[str]:
        """Call the provider and return the reply text, or None"""

    async def _post_json(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> Optional[Any]:
        """POST a JSON body; returns the decoded reply, or None on a non-2xx status"""
        if self._http_client is not None:
            response = await self._http_client.post(url, json=body, headers=headers, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout)) as client:
                response = await client.post(url, json=body, headers=headers)

        if not response.is_success:
            logger.warning(
                "%s classification request failed (status=%s): %s",
                self.provider, response.status_code, response.text[:500],
            )
            return None

        try:
            return response.json()
        except ValueError as e:
            logger.warning("%s classification returned a non-JSON body: %s", self.provider, e)
            return None

    def parse_classification(self, text: str) -> Optional[ClassificationResult]:
        """Parse the model's reply text into a normalized ClassificationResult."""
        payload_text = extract_json_block(text)
        if payload_text is None:
            logger.warning("Unable to locate JSON payload in classification response: %.200s", text)
            return None

        try:
            data = json.loads(payload_text)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse JSON payload from classification response: %s", e)
            return None

        if not isinstance(data, dict):
            logger.warning("Classification response JSON is not an object")
            return None

        score = data.get("urgency_score", data.get("urgencyScore"))
        if not isinstance(score, (int, float)) or isinstance(score, bool) or math.isnan(score):
            logger.warning("Classification response has no numeric urgency score: %r", score)
            return None

        reasons = data.get("reasons")
        tags = data.get("tags")
        context = data.get("context")

        try:
            return ClassificationResult(
                urgency_score=float(score),
                relevance=data.get("relevance"),
                filtered=bool(data.get("filtered", False)),
                reasons=[str(r) for r in reasons] if isinstance(reasons, list) else [],
                context=context if isinstance(context, dict) else {},
                tags=[str(t) for t in tags] if isinstance(tags, list) else [],
                version=self.version,
            )
        except ValidationError as e:
            logger.warning("Classification response failed validation: %s", e)
            return None

    @staticmethod
    def _event_json(event: AttentionEvent) -> Dict[str, Any]:
        return event.model_dump(mode="json")


class ResponsesBackend(ClassificationBackend):
    """Structured-response protocol with guardrail headers and a JSON schema"""

    provider = PROVIDER_CODEX

    def __init__(
        self,
        model: str = DEFAULT_CODEX_MODEL,
        base_url: str = DEFAULT_CODEX_BASE_URL,
        api_key: Optional[str] = None,
        require_api_key: bool = True,
        send_codex_headers: bool = True,
        policy_uri: Optional[str] = None,
        max_output_tokens: int = 512,
        allow_tools: Optional[List[str]] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            model=model,
            base_url=base_url,
            api_key=api_key,
            require_api_key=require_api_key,
            timeout=timeout,
            http_client=http_client,
        )
        self._send_codex_headers = send_codex_headers
        self._policy_uri = policy_uri or None
        self._max_output_tokens = max_output_tokens
        self._allow_tools = list(allow_tools or [])

    def build_headers(self) -> Dict[str, str]:
        headers = {"content-type": "application/json"}
        if self._api_key:
            headers["authorization"] = f"Bearer {self._api_key}"
        if self._send_codex_headers:
            headers["x-codex-mode"] = "non_interactive_ci"
        if self._policy_uri:
            headers["x-codex-guardrails-policy"] = self._policy_uri
        return headers

    def build_payload(self, event: AttentionEvent) -> Dict[str, Any]:
        system = CODEX_SYSTEM_PROMPT
        if self._policy_uri:
            system += f" Policy: {self._policy_uri}"

        return {
            "model": self.model,
            "input": [
                {"role": "system", "content": system},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": json.dumps({
                                "event": self._event_json(event),
                                "instructions": CODEX_INSTRUCTIONS,
                            }),
                        }
                    ],
                },
            ],
            "guardrails": {
                "allow_tools": self._allow_tools,
                "temperature": 0,
                "max_output_tokens": self._max_output_tokens,
            },
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "AttentionClassification",
                    "schema": CLASSIFICATION_SCHEMA,
                },
            },
        }

    async def _request(self, event: AttentionEvent) -> Optional[str]:
        payload = await self._post_json(
            f"{self.base_url}/responses",
            self.build_payload(event),
            self.build_headers(),
        )
        if payload is None:
            return None

        text = _responses_text(payload)
        if not text:
            logger.warning("codex classification returned unexpected payload: %.300s", payload)
            return None
        return text


def _responses_text(payload: Any) -> Optional[str]:
    """Collect reply text from a responses-style body"""
    if not isinstance(payload, dict):
        return None

    output_text = payload.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text

    parts: List[str] = []
    output = payload.get("output")
    if isinstance(output, list):
        for item in output:
            if isinstance(item, dict):
                parts.extend(_content_texts(item.get("content")))
    if not parts:
        parts = _content_texts(payload.get("content"))
    return "\n".join(parts) if parts else None


def _content_texts(content: Any) -> List[str]:
    if isinstance(content, str):
        return [content] if content else []
    if isinstance(content, list):
        return [
            part["text"] for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"]
        ]
    return []


class ChatBackend(ClassificationBackend):
    """Plain chat protocol; usable without an API key"""

    provider = PROVIDER_OLLAMA

    def __init__(
        self,
        model: str = DEFAULT_OLLAMA_MODEL,
        base_url: str = DEFAULT_OLLAMA_BASE_URL,
        api_key: Optional[str] = None,
        require_api_key: bool = False,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            model=model,
            base_url=base_url,
            api_key=api_key,
            require_api_key=require_api_key,
            timeout=timeout,
            http_client=http_client,
        )

    def build_payload(self, event: AttentionEvent) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": CHAT_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": json.dumps({
                        "event": self._event_json(event),
                        "instructions": CHAT_INSTRUCTIONS,
                    }),
                },
            ],
            "options": {"temperature": 0},
            "stream": False,
        }

    async def _request(self, event: AttentionEvent) -> Optional[str]:
        headers = {"content-type": "application/json"}
        if self._api_key:
            headers["authorization"] = f"Bearer {self._api_key}"

        payload = await self._post_json(f"{self.base_url}/api/chat", self.build_payload(event), headers)
        if payload is None:
            return None

        message = payload.get("message") if isinstance(payload, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not content:
            logger.warning("ollama classification returned unexpected payload: %.300s", payload)
            return None
        return content if isinstance(content, str) else json.dumps(content)


def resolve_provider(guardrails: GuardrailConfig) -> str:
    """Pick the backend protocol: explicit setting first, then the base URL"""
    provider = (guardrails.provider or "").strip().lower()
    if provider in (PROVIDER_CODEX, PROVIDER_OLLAMA):
        return provider
    if provider:
        logger.warning("Unsupported classifier provider %r, detecting from base URL", guardrails.provider)

    base_url = guardrails.base_url or ""
    if "11434" in base_url or "ollama" in base_url.lower():
        return PROVIDER_OLLAMA
    return PROVIDER_CODEX


def create_backend(
    guardrails: GuardrailConfig,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ClassificationBackend:
    """Build the configured backend. Called once at wiring time."""
    provider = resolve_provider(guardrails)

    if provider == PROVIDER_OLLAMA:
        require_key = guardrails.require_api_key if guardrails.require_api_key is not None else False
        return ChatBackend(
            model=guardrails.model or DEFAULT_OLLAMA_MODEL,
            base_url=guardrails.base_url or DEFAULT_OLLAMA_BASE_URL,
            api_key=guardrails.api_key,
            require_api_key=bool(require_key),
            timeout=guardrails.timeout,
            http_client=http_client,
        )

    require_key = guardrails.require_api_key if guardrails.require_api_key is not None else True
    send_headers = guardrails.send_codex_headers if guardrails.send_codex_headers is not None else True
    return ResponsesBackend(
        model=guardrails.model or DEFAULT_CODEX_MODEL,
        base_url=guardrails.base_url or DEFAULT_CODEX_BASE_URL,
        api_key=guardrails.api_key,
        require_api_key=bool(require_key),
        send_codex_headers=bool(send_headers),
        policy_uri=guardrails.policy_uri,
        max_output_tokens=guardrails.max_output_tokens,
        allow_tools=guardrails.allow_tools,
        timeout=guardrails.timeout,
        http_client=http_client,
    )
