"""Configuration loader for Footnoter.

Loads from footnoter.toml with sensible defaults when file is absent,
then applies environment overrides. Configuration is loaded once at
startup and passed via dependency injection.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from footnoter.exceptions import FootnoterError


class ConfigError(FootnoterError):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class ModelConfig:
    """Endpoint and sampling settings for the annotation model."""

    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4.1"
    api_key: str = ""
    organization: str = ""
    temperature: float = 0.3
    timeout_seconds: float = 0.0  # 0 = scale with chunk budget

    def __repr__(self) -> str:
        key_display = f"***{self.api_key[-4:]}" if self.api_key else ""
        return (
            f"ModelConfig(model={self.model!r}, base_url={self.base_url!r}, "
            f"api_key={key_display!r})"
        )


@dataclass(frozen=True)
class ChunkingConfig:
    chunk_tokens: int = 2200
    margin_tokens: int = 250
    min_effective_tokens: int = 400
    token_cache_size: int = 512
    shrink_factors: tuple[float, ...] = (0.6, 0.4, 0.25)


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 6
    base_delay_seconds: float = 1.5
    backoff_factor: float = 1.7
    max_delay_seconds: float = 20.0
    max_chunk_attempts: int = 3
    shrink_after_attempts: int = 2


@dataclass(frozen=True)
class MemoryConfig:
    prompt_limit: int = 40
    store_limit: int = 300


@dataclass(frozen=True)
class CacheConfig:
    root: str = ".cache"
    keep_chunks: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class Config:
    """Top-level Footnoter configuration."""

    model: ModelConfig = field(default_factory=ModelConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def cache_root(self) -> Path:
        return Path(self.cache.root).expanduser()

    @property
    def timeout_seconds(self) -> float:
        """Per-call timeout; scales with the chunk budget unless configured."""
        if self.model.timeout_seconds > 0:
            return float(self.model.timeout_seconds)
        scaled = int(self.chunking.chunk_tokens * 0.03)
        return float(max(60, min(180, scaled)))

    def with_overrides(self, **sections: object) -> Config:
        """Return a copy with individual fields replaced, e.g. ``chunk_tokens=900``."""
        updated = self
        for key, value in sections.items():
            if value is None:
                continue
            for section_name in ("model", "chunking", "retry", "memory", "cache", "logging"):
                section = getattr(updated, section_name)
                if hasattr(section, key):
                    updated = replace(updated, **{section_name: replace(section, **{key: value})})
                    break
            else:
                raise ConfigError(f"Unknown configuration field: {key}")
        return updated


_TRUTHY = {"1", "true", "yes", "on"}


def _positive_int(value: object, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e
    if number <= 0:
        raise ConfigError(f"{name} must be a positive integer, got {number}")
    return number


def _float(value: object, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def _parse_shrink_factors(raw: object) -> tuple[float, ...]:
    if not isinstance(raw, (list, tuple)):
        raise ConfigError("chunking.shrink_factors must be a list of numbers")
    factors = tuple(_float(item, "chunking.shrink_factors") for item in raw)
    if any(not 0 < f < 1 for f in factors):
        raise ConfigError("chunking.shrink_factors entries must be between 0 and 1")
    return factors


def apply_env_overrides(config: Config, env: Mapping[str, str] | None = None) -> Config:
    """Overlay the environment variables the annotator has always honoured."""
    env = os.environ if env is None else env
    overrides: dict[str, object] = {}

    if env.get("OPENAI_API_KEY"):
        overrides["api_key"] = env["OPENAI_API_KEY"].strip()
    if env.get("OPENAI_BASE_URL"):
        overrides["base_url"] = env["OPENAI_BASE_URL"].strip().rstrip("/")
    organization = env.get("OPENAI_ORGANIZATION") or env.get("OPENAI_ORG")
    if organization:
        overrides["organization"] = organization.strip()
    if env.get("MODEL_NAME"):
        overrides["model"] = env["MODEL_NAME"].strip()
    if env.get("CHUNK_TOKENS"):
        overrides["chunk_tokens"] = _positive_int(env["CHUNK_TOKENS"], "CHUNK_TOKENS")
    if env.get("ANNOTATION_TEMPERATURE"):
        overrides["temperature"] = _float(
            env["ANNOTATION_TEMPERATURE"], "ANNOTATION_TEMPERATURE",
        )
    if env.get("OPENAI_TIMEOUT"):
        overrides["timeout_seconds"] = float(
            _positive_int(env["OPENAI_TIMEOUT"], "OPENAI_TIMEOUT"),
        )
    if "KEEP_CHUNKS" in env:
        overrides["keep_chunks"] = env["KEEP_CHUNKS"].strip().lower() in _TRUTHY

    return config.with_overrides(**overrides)


def load_config(path: Path | None = None, env: Mapping[str, str] | None = None) -> Config:
    """Load configuration from a TOML file, then apply environment overrides.

    If path is None, searches for footnoter.toml in current directory then
    ~/.footnoter/. Returns default config if no file is found.
    """
    if path is None:
        candidates = [
            Path.cwd() / "footnoter.toml",
            Path.home() / ".footnoter" / "footnoter.toml",
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path is None or not path.exists():
        return apply_env_overrides(Config(), env)

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    defaults = Config()

    model_data = raw.get("model", {})
    model = ModelConfig(
        base_url=str(model_data.get("base_url", defaults.model.base_url)).rstrip("/"),
        model=model_data.get("model", defaults.model.model),
        api_key=model_data.get("api_key", ""),
        organization=model_data.get("organization", ""),
        temperature=_float(
            model_data.get("temperature", defaults.model.temperature), "model.temperature",
        ),
        timeout_seconds=_float(model_data.get("timeout_seconds", 0.0), "model.timeout_seconds"),
    )

    chunk_data = raw.get("chunking", {})
    chunking = ChunkingConfig(
        chunk_tokens=_positive_int(
            chunk_data.get("chunk_tokens", defaults.chunking.chunk_tokens),
            "chunking.chunk_tokens",
        ),
        margin_tokens=max(0, int(chunk_data.get("margin_tokens", defaults.chunking.margin_tokens))),
        min_effective_tokens=_positive_int(
            chunk_data.get("min_effective_tokens", defaults.chunking.min_effective_tokens),
            "chunking.min_effective_tokens",
        ),
        token_cache_size=max(
            32, int(chunk_data.get("token_cache_size", defaults.chunking.token_cache_size)),
        ),
        shrink_factors=_parse_shrink_factors(
            chunk_data.get("shrink_factors", list(defaults.chunking.shrink_factors)),
        ),
    )

    retry_data = raw.get("retry", {})
    retry = RetryConfig(
        max_attempts=_positive_int(
            retry_data.get("max_attempts", defaults.retry.max_attempts), "retry.max_attempts",
        ),
        base_delay_seconds=max(0.0, _float(
            retry_data.get("base_delay_seconds", defaults.retry.base_delay_seconds),
            "retry.base_delay_seconds",
        )),
        backoff_factor=max(1.0, _float(
            retry_data.get("backoff_factor", defaults.retry.backoff_factor),
            "retry.backoff_factor",
        )),
        max_delay_seconds=max(0.0, _float(
            retry_data.get("max_delay_seconds", defaults.retry.max_delay_seconds),
            "retry.max_delay_seconds",
        )),
        max_chunk_attempts=_positive_int(
            retry_data.get("max_chunk_attempts", defaults.retry.max_chunk_attempts),
            "retry.max_chunk_attempts",
        ),
        shrink_after_attempts=_positive_int(
            retry_data.get("shrink_after_attempts", defaults.retry.shrink_after_attempts),
            "retry.shrink_after_attempts",
        ),
    )

    mem_data = raw.get("memory", {})
    memory = MemoryConfig(
        prompt_limit=max(0, int(mem_data.get("prompt_limit", defaults.memory.prompt_limit))),
        store_limit=_positive_int(
            mem_data.get("store_limit", defaults.memory.store_limit), "memory.store_limit",
        ),
    )

    cache_data = raw.get("cache", {})
    cache = CacheConfig(
        root=cache_data.get("root", defaults.cache.root),
        keep_chunks=bool(cache_data.get("keep_chunks", False)),
    )

    log_data = raw.get("logging", {})
    logging_cfg = LoggingConfig(level=str(log_data.get("level", "INFO")).upper())

    config = Config(
        model=model,
        chunking=chunking,
        retry=retry,
        memory=memory,
        cache=cache,
        logging=logging_cfg,
    )
    return apply_env_overrides(config, env)
