"""
Configuration Management for the Attention Pipeline

Loads pipeline policy from <data_dir>/attention/config.json and environment
variables. The data directory defaults to ~/.attention-gateway and can be
moved with ATTENTION_DATA_DIR.
"""

import os
import json
import logging
import tempfile
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger("attention.common.config")

DEFAULT_DATA_DIR = Path.home() / ".attention-gateway"
CONFIG_RELATIVE_PATH = Path("attention") / "config.json"
DEFAULT_THRESHOLD = 5.0


def default_data_dir() -> Path:
    env_dir = os.getenv("ATTENTION_DATA_DIR")
    return Path(env_dir).expanduser() if env_dir else DEFAULT_DATA_DIR


@dataclass
class GuardrailConfig:
    """Classification backend tuning"""
    policy_uri: str = ""
    max_output_tokens: int = 512
    allow_tools: List[str] = field(default_factory=list)
    base_url: str = ""
    model: str = ""
    api_key: str = ""
    require_api_key: Optional[bool] = None  # None: derived from provider
    send_codex_headers: Optional[bool] = None  # None: derived from provider
    provider: str = ""  # "codex", "ollama", or "" to detect from base_url
    timeout: float = 30.0


@dataclass
class SlackTarget:
    """Where Slack notifications land"""
    channel_id: str = ""
    thread_ts: Optional[str] = None
    mention_user_id: Optional[str] = None
    suppress_mentions: bool = False
    use_dedicated_token: bool = False


@dataclass
class DispatchTargets:
    slack: Optional[SlackTarget] = None


@dataclass
class AttentionConfig:
    """Main attention pipeline configuration"""
    thresholds: Dict[str, float] = field(default_factory=dict)
    default_threshold: float = DEFAULT_THRESHOLD
    channel_preferences: Dict[str, List[str]] = field(default_factory=dict)
    guardrails: GuardrailConfig = field(default_factory=GuardrailConfig)
    dispatch_targets: DispatchTargets = field(default_factory=DispatchTargets)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _get(data: dict, key: str, legacy_key: str, default: Any) -> Any:
    """Read ``key``, falling back to the camelCase spelling older files used"""
    if key in data:
        return data[key]
    return data.get(legacy_key, default)


def _as_dict(value: Any, section: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        logger.warning("Ignoring config section %s: expected an object, got %s", section, type(value).__name__)
        return {}
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_flag(value: Any, key: str, default: Optional[bool]) -> Optional[bool]:
    """Accept only real booleans; "false" and 0 are not flags"""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    logger.warning("Ignoring non-boolean value for %s: %r", key, value)
    return default


def _parse_thresholds(data: dict) -> Dict[str, float]:
    """Parse thresholds section, dropping non-numeric entries"""
    raw = _as_dict(data.get("thresholds"), "thresholds")
    thresholds = {}
    for key, value in raw.items():
        if not _is_number(value):
            logger.warning("Ignoring non-numeric threshold for %s: %r", key, value)
            continue
        thresholds[str(key)] = float(value)
    return thresholds


def _parse_default_threshold(data: dict) -> float:
    value = _get(data, "default_threshold", "defaultThreshold", DEFAULT_THRESHOLD)
    if not _is_number(value):
        logger.warning("Ignoring non-numeric default threshold: %r", value)
        return DEFAULT_THRESHOLD
    return float(value)


def _parse_channel_preferences(data: dict) -> Dict[str, List[str]]:
    raw = _as_dict(_get(data, "channel_preferences", "channelPreferences", {}), "channel_preferences")
    preferences = {}
    for source, channels in raw.items():
        if not isinstance(channels, list):
            logger.warning("Ignoring channel preferences for %s: expected a list", source)
            continue
        preferences[str(source)] = [str(c) for c in channels]
    return preferences


def _parse_guardrails(data: dict) -> GuardrailConfig:
    """Parse guardrails section from config dict"""
    g = _as_dict(data.get("guardrails"), "guardrails")
    defaults = GuardrailConfig()
    max_tokens = _get(g, "max_output_tokens", "maxCodexTokens", defaults.max_output_tokens)
    timeout = g.get("timeout", defaults.timeout)
    allow_tools = _get(g, "allow_tools", "allowTools", [])
    return GuardrailConfig(
        policy_uri=_get(g, "policy_uri", "codexPolicyUri", "") or "",
        max_output_tokens=int(max_tokens) if _is_number(max_tokens) else defaults.max_output_tokens,
        allow_tools=[str(t) for t in allow_tools] if isinstance(allow_tools, list) else [],
        base_url=_get(g, "base_url", "codexBaseUrl", "") or "",
        model=_get(g, "model", "codexModel", "") or "",
        api_key=_get(g, "api_key", "codexApiKey", "") or "",
        require_api_key=_parse_flag(_get(g, "require_api_key", "requireApiKey", None), "require_api_key", None),
        send_codex_headers=_parse_flag(
            _get(g, "send_codex_headers", "sendCodexHeaders", None), "send_codex_headers", None,
        ),
        provider=_get(g, "provider", "codexProvider", "") or "",
        timeout=float(timeout) if _is_number(timeout) else defaults.timeout,
    )


def _parse_dispatch_targets(data: dict) -> DispatchTargets:
    """Parse dispatch_targets section from config dict"""
    targets = _as_dict(_get(data, "dispatch_targets", "dispatchTargets", {}), "dispatch_targets")
    if "slack" not in targets:
        return DispatchTargets()
    s = _as_dict(targets.get("slack"), "dispatch_targets.slack")
    return DispatchTargets(
        slack=SlackTarget(
            channel_id=_get(s, "channel_id", "channelId", "") or "",
            thread_ts=_get(s, "thread_ts", "threadTs", None),
            mention_user_id=_get(s, "mention_user_id", "mentionUserId", None),
            suppress_mentions=bool(
                _parse_flag(_get(s, "suppress_mentions", "suppressMentions", None), "suppress_mentions", False)
            ),
            use_dedicated_token=bool(
                _parse_flag(_get(s, "use_dedicated_token", "useDedicatedToken", None), "use_dedicated_token", False)
            ),
        )
    )


def parse_config(data: dict) -> AttentionConfig:
    """Build a config from a parsed document, merging in defaults per section"""
    return AttentionConfig(
        thresholds=_parse_thresholds(data),
        default_threshold=_parse_default_threshold(data),
        channel_preferences=_parse_channel_preferences(data),
        guardrails=_parse_guardrails(data),
        dispatch_targets=_parse_dispatch_targets(data),
    )


# Highest priority first
_ENV_GUARDRAIL_MAP = {
    "api_key": ("CODEX_API_KEY", "OPENAI_API_KEY"),
    "base_url": ("CODEX_BASE_URL", "OPENAI_BASE_URL"),
    "model": ("CODEX_MODEL", "OPENAI_MODEL"),
    "policy_uri": ("CODEX_POLICY_URI", "OPENAI_POLICY_URI"),
    "provider": ("ATTENTION_CLASSIFIER_PROVIDER",),
}


def apply_env_overrides(config: AttentionConfig) -> AttentionConfig:
    """Apply environment variable overrides and record which keys they set"""
    for attr, env_vars in _ENV_GUARDRAIL_MAP.items():
        for env_var in env_vars:
            val = os.getenv(env_var)
            if val:
                setattr(config.guardrails, attr, val)
                config._env_sourced_keys.add(attr)
                break

    max_tokens = os.getenv("CODEX_MAX_OUTPUT_TOKENS")
    if max_tokens:
        try:
            config.guardrails.max_output_tokens = int(max_tokens)
            config._env_sourced_keys.add("max_output_tokens")
        except ValueError:
            logger.warning("Ignoring CODEX_MAX_OUTPUT_TOKENS=%r: not an integer", max_tokens)

    return config


def config_to_dict(config: AttentionConfig) -> Dict[str, Any]:
    """Serialize config for persistence.

    The API key is written as an empty string when it came from the
    environment so that secrets are not persisted to disk.
    """
    env_sourced = getattr(config, "_env_sourced_keys", set())
    g = config.guardrails
    data = {
        "thresholds": dict(config.thresholds),
        "default_threshold": config.default_threshold,
        "channel_preferences": {k: list(v) for k, v in config.channel_preferences.items()},
        "guardrails": {
            "policy_uri": g.policy_uri,
            "max_output_tokens": g.max_output_tokens,
            "allow_tools": list(g.allow_tools),
            "base_url": g.base_url,
            "model": g.model,
            "api_key": "" if "api_key" in env_sourced else g.api_key,
            "require_api_key": g.require_api_key,
            "send_codex_headers": g.send_codex_headers,
            "provider": g.provider,
            "timeout": g.timeout,
        },
        "dispatch_targets": {},
    }
    slack = config.dispatch_targets.slack
    if slack is not None:
        data["dispatch_targets"]["slack"] = {
            "channel_id": slack.channel_id,
            "thread_ts": slack.thread_ts,
            "mention_user_id": slack.mention_user_id,
            "suppress_mentions": slack.suppress_mentions,
            "use_dedicated_token": slack.use_dedicated_token,
        }
    return data


class AttentionConfigService:
    """
    Owns the attention config document.

    The config is read once and cached; ``reload()`` re-reads it. Components
    receive the returned AttentionConfig object and never mutate it.
    """

    def __init__(self, data_dir: Optional[Path] = None, apply_env: bool = True):
        """
        Args:
            data_dir: Gateway data directory (default: ATTENTION_DATA_DIR or ~/.attention-gateway)
            apply_env: Whether load() applies environment variable overrides
        """
        self._data_dir = Path(data_dir) if data_dir else default_data_dir()
        self._apply_env = apply_env
        self._config: Optional[AttentionConfig] = None

    @property
    def config_path(self) -> Path:
        return self._data_dir / CONFIG_RELATIVE_PATH

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def load(self) -> AttentionConfig:
        """
        Load configuration from file and environment variables.

        Priority (highest to lowest):
        1. Environment variables
        2. Config file
        3. Default values

        A missing file is not an error. An unreadable or malformed file is
        logged and the defaults are used.
        """
        config = AttentionConfig()
        path = self.config_path

        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    config = parse_config(data)
                else:
                    logger.warning("Attention config at %s is not a JSON object; using defaults", path)
            except (json.JSONDecodeError, OSError, ValueError, TypeError) as e:
                logger.warning("Failed to load attention config from %s; using defaults: %s", path, e)
                config = AttentionConfig()

        if self._apply_env:
            apply_env_overrides(config)

        self._config = config
        return config

    def get(self) -> AttentionConfig:
        """Return the cached config, loading it on first use"""
        if self._config is None:
            return self.load()
        return self._config

    def reload(self) -> AttentionConfig:
        logger.info("Reloading attention config from %s", self.config_path)
        return self.load()

    def ensure_defaults(self) -> bool:
        """Write the built-in defaults if no config file exists.

        Returns True when the file was created. An existing file is left
        untouched, whatever its contents.
        """
        if self.config_path.exists():
            return False
        self.write(AttentionConfig())
        logger.info("Wrote default attention config to %s", self.config_path)
        return True

    def write(self, config: AttentionConfig) -> None:
        """Persist config atomically (temp file + rename)."""
        path = self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=str(path.parent), prefix=".config.", suffix=".tmp", delete=False
        ) as tf:
            json.dump(config_to_dict(config), tf, indent=2)
            tf.write("\n")
            temp_path = Path(tf.name)

        try:
            os.replace(str(temp_path), str(path))
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

        # May hold the classifier API key
        path.chmod(0o600)
