from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from claude_web_client.proxies import split_proxy_text
from claude_web_client.session import DEFAULT_MODEL, DEFAULT_TIMEZONE
from claude_web_client.transport import DEFAULT_TIMEOUT_SECONDS


@dataclass
class RuntimeEnv:
    cookie: str
    cookie_env_var: str
    extra_proxies: list[str]


@dataclass
class AppConfig:
    proxies: list[str]
    timeout_seconds: float
    model: str
    timezone: str
    retry_attempts: int
    log_level: str
    log_consumers: list | None


def load_json_config(config_path: Path | None = None) -> dict:
    path = config_path or Path.cwd() / "config.json"
    if path.exists():
        with open(path) as f:
            return json.load(f)
    return {}


def parse_app_config(config: dict) -> AppConfig:
    proxies = config.get("Proxies") or []
    if isinstance(proxies, str):
        proxies = split_proxy_text(proxies)
    return AppConfig(
        proxies=[str(p) for p in proxies],
        timeout_seconds=float(config.get("TimeoutSeconds", DEFAULT_TIMEOUT_SECONDS)),
        model=str(config.get("Model", DEFAULT_MODEL)),
        timezone=str(config.get("Timezone", DEFAULT_TIMEZONE)),
        retry_attempts=max(1, int(config.get("RetryAttempts", 1))),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        cookie=os.environ.get("CLAUDE_COOKIE", "").strip(),
        cookie_env_var="CLAUDE_COOKIE",
        extra_proxies=split_proxy_text(os.environ.get("CLAUDE_PROXIES")),
    )
