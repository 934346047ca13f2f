"""Configuration management for Keyword Notifier.

Loads from YAML file with environment variable expansion.
All values have sensible defaults for quick start.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

DELIVERY_MODES = ("slack", "email")
DEFAULT_KEYWORDS = ("alert", "emergency")


def _expand_env_vars(value: Any) -> Any:
    """Recursively expand ${ENV_VAR} references in config values."""
    if isinstance(value, str):
        pattern = re.compile(r"\$\{([^}]+)\}")
        def replacer(match: re.Match) -> str:
            env_key = match.group(1)
            env_val = os.environ.get(env_key)
            if env_val is None:
                raise ValueError(f"Environment variable '{env_key}' not set")
            return env_val
        return pattern.sub(replacer, value)
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    return value


def _non_negative_int(data: dict, key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"'{key}' must be a non-negative integer, got {value!r}")
    return value


def _id_set(values: Any) -> frozenset[str]:
    return frozenset(str(v) for v in (values or []))


@dataclass
class SlackConfig:
    """Slack connection settings."""
    bot_token: str = ""
    app_token: str = ""
    signing_secret: str = ""
    owner_user_id: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> SlackConfig:
        return cls(
            bot_token=data.get("bot_token", ""),
            app_token=data.get("app_token", ""),
            signing_secret=data.get("signing_secret", ""),
            owner_user_id=data.get("owner_user_id", ""),
        )


@dataclass(frozen=True)
class WatchConfig:
    """Snapshot of the watch rules evaluated for every message.

    Empty id sets mean "no restriction". Instances are never mutated by the
    pipeline; hosts swap in a new snapshot to change behaviour.
    """
    global_enabled: bool = True
    allowed_servers: frozenset[str] = frozenset()
    allowed_channels: frozenset[str] = frozenset()
    user_whitelist: frozenset[str] = frozenset()
    ignore_bots: bool = True
    default_keywords: tuple[str, ...] = DEFAULT_KEYWORDS
    per_server_keywords: Mapping[str, tuple[str, ...]] = field(default_factory=dict, hash=False)
    rate_limit_per_minute: int = 5
    cooldown_seconds: int = 30

    def __post_init__(self) -> None:
        # Private read-only copy; excluded from __hash__ above
        object.__setattr__(
            self, "per_server_keywords", MappingProxyType(dict(self.per_server_keywords)),
        )

    @classmethod
    def from_dict(cls, data: dict) -> WatchConfig:
        per_server = {
            str(server_id): tuple(str(kw) for kw in (keywords or []))
            for server_id, keywords in (data.get("per_server_keywords") or {}).items()
        }
        return cls(
            global_enabled=bool(data.get("global_enabled", True)),
            allowed_servers=_id_set(data.get("allowed_servers")),
            allowed_channels=_id_set(data.get("allowed_channels")),
            user_whitelist=_id_set(data.get("user_whitelist")),
            ignore_bots=bool(data.get("ignore_bots", True)),
            default_keywords=tuple(
                str(kw) for kw in data.get("default_keywords", DEFAULT_KEYWORDS) or []
            ),
            per_server_keywords=per_server,
            rate_limit_per_minute=_non_negative_int(data, "rate_limit_per_minute", 5),
            cooldown_seconds=_non_negative_int(data, "cooldown_seconds", 30),
        )


@dataclass
class DeliveryConfig:
    """How admitted notifications are rendered and sent."""
    mode: str = "slack"
    link_template: str = "https://slack.com/archives/{channel_id}/p{message_key}"
    excerpt_chars: int = 500
    max_workers: int = 2

    @classmethod
    def from_dict(cls, data: dict) -> DeliveryConfig:
        mode = data.get("mode", "slack")
        if mode not in DELIVERY_MODES:
            raise ValueError(
                f"Unknown delivery mode '{mode}' (expected one of {', '.join(DELIVERY_MODES)})"
            )
        max_workers = _non_negative_int(data, "max_workers", 2)
        if max_workers == 0:
            raise ValueError("'max_workers' must be at least 1")
        return cls(
            mode=mode,
            link_template=data.get("link_template", cls.link_template),
            excerpt_chars=_non_negative_int(data, "excerpt_chars", 500),
            max_workers=max_workers,
        )


@dataclass
class EmailConfig:
    """SendGrid email delivery settings."""
    sendgrid_api_key: str = ""
    sender_address: str = "notifier@plugin.com"
    recipients: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> EmailConfig:
        return cls(
            sendgrid_api_key=data.get("sendgrid_api_key", ""),
            sender_address=data.get("sender_address", "notifier@plugin.com"),
            recipients=[str(r) for r in data.get("recipients", []) or []],
        )


@dataclass
class NotifierConfig:
    """Top-level notifier configuration."""
    slack: SlackConfig = field(default_factory=SlackConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    email: EmailConfig = field(default_factory=EmailConfig)

    @classmethod
    def from_dict(cls, data: dict) -> NotifierConfig:
        return cls(
            slack=SlackConfig.from_dict(data.get("slack", {})),
            watch=WatchConfig.from_dict(data.get("watch", {})),
            delivery=DeliveryConfig.from_dict(data.get("delivery", {})),
            email=EmailConfig.from_dict(data.get("email", {})),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> NotifierConfig:
        """Load config from YAML file with env var expansion."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            raw = yaml.safe_load(f)
        if raw is None:
            raw = {}
        expanded = _expand_env_vars(raw)
        return cls.from_dict(expanded)

    @classmethod
    def default(cls) -> NotifierConfig:
        """Create config with all defaults."""
        return cls()


def load_config(path: str | Path | None = None) -> NotifierConfig:
    """Load configuration from file or use defaults.

    Resolution order:
    1. Explicit path argument
    2. KEYWORD_NOTIFIER_CONFIG environment variable
    3. ./config.yaml
    4. ~/.keyword-notifier/config.yaml
    5. Default values
    """
    if path:
        return NotifierConfig.from_yaml(path)

    env_path = os.environ.get("KEYWORD_NOTIFIER_CONFIG")
    if env_path:
        return NotifierConfig.from_yaml(env_path)

    local_path = Path("config.yaml")
    if local_path.exists():
        return NotifierConfig.from_yaml(local_path)

    home_path = Path.home() / ".keyword-notifier" / "config.yaml"
    if home_path.exists():
        return NotifierConfig.from_yaml(home_path)

    return NotifierConfig.default()
