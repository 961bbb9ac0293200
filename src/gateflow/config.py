from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from gateflow.tools.dispatcher import DEFAULT_TOOL_TIMEOUTS

ProviderName = Literal["claude", "openai"]
CONFIG_FILENAME = "gateflow.toml"

DEFAULT_MODELS: dict[str, str] = {
    "claude": "claude-sonnet-4-5",
    "openai": "gpt-4.1",
}
DEFAULT_API_KEY_ENVS: dict[str, str] = {
    "claude": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


class ConfigError(ValueError):
    """Raised when a configuration file holds invalid values."""


@dataclass(slots=True)
class ProviderConfig:
    name: ProviderName = "claude"
    model: str = ""
    max_tokens: int = 8000
    api_key_env: str = ""
    request_timeout_seconds: float = 600.0

    def __post_init__(self) -> None:
        if self.name not in DEFAULT_MODELS:
            raise ConfigError(f"Unsupported provider: {self.name}")
        if not self.model:
            self.model = DEFAULT_MODELS[self.name]
        if not self.api_key_env:
            self.api_key_env = DEFAULT_API_KEY_ENVS[self.name]


@dataclass(slots=True)
class EngineConfig:
    max_iterations: int = 10


@dataclass(slots=True)
class ToolsConfig:
    max_failures: int = 3
    failure_reset_seconds: float = 60.0
    default_timeout_seconds: float = 30.0
    timeouts: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TOOL_TIMEOUTS))


@dataclass(slots=True)
class RetryConfig:
    max_retries: int = 2
    backoff_seconds: float = 3.0
    artifact_backoff_seconds: float = 5.0
    window_seconds: float = 600.0


@dataclass(slots=True)
class ContextConfig:
    document_limit: int = 10
    max_documents: int = 5
    max_document_chars: int = 3000
    handoff_limit: int = 5
    decision_limit: int = 5


@dataclass(slots=True)
class StateConfig:
    root: str = ".gateflow"


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(slots=True)
class GateflowConfig:
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    state: StateConfig = field(default_factory=StateConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> GateflowConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> GateflowConfig:
        tools = dict(data.get("tools", {}))
        timeouts = {**DEFAULT_TOOL_TIMEOUTS, **tools.pop("timeouts", {})}
        try:
            return cls(
                provider=ProviderConfig(**data.get("provider", {})),
                engine=EngineConfig(**data.get("engine", {})),
                tools=ToolsConfig(**tools, timeouts=timeouts),
                retry=RetryConfig(**data.get("retry", {})),
                context=ContextConfig(**data.get("context", {})),
                state=StateConfig(**data.get("state", {})),
                logging=LoggingConfig(**data.get("logging", {})),
            )
        except TypeError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc

    def to_dict(self) -> dict:
        return {
            "provider": {
                "name": self.provider.name,
                "model": self.provider.model,
                "max_tokens": self.provider.max_tokens,
                "api_key_env": self.provider.api_key_env,
                "request_timeout_seconds": self.provider.request_timeout_seconds,
            },
            "engine": {"max_iterations": self.engine.max_iterations},
            "tools": {
                "max_failures": self.tools.max_failures,
                "failure_reset_seconds": self.tools.failure_reset_seconds,
                "default_timeout_seconds": self.tools.default_timeout_seconds,
                "timeouts": dict(self.tools.timeouts),
            },
            "retry": {
                "max_retries": self.retry.max_retries,
                "backoff_seconds": self.retry.backoff_seconds,
                "artifact_backoff_seconds": self.retry.artifact_backoff_seconds,
                "window_seconds": self.retry.window_seconds,
            },
            "context": {
                "document_limit": self.context.document_limit,
                "max_documents": self.context.max_documents,
                "max_document_chars": self.context.max_document_chars,
                "handoff_limit": self.context.handoff_limit,
                "decision_limit": self.context.decision_limit,
            },
            "state": {"root": self.state.root},
            "logging": {"level": self.logging.level},
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0")
        return rendered + "0" if rendered.endswith(".") else rendered
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: GateflowConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section, values in data.items():
        tables = {key: value for key, value in values.items() if isinstance(value, dict)}
        lines.append(f"[{section}]")
        for key, value in values.items():
            if key not in tables:
                lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
        for key, table in tables.items():
            lines.append(f"[{section}.{key}]")
            for name, value in table.items():
                lines.append(f"{name} = {_toml_value(value)}")
            lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> GateflowConfig:
    if not path.exists():
        return GateflowConfig.default()
    return GateflowConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: GateflowConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
