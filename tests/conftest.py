"""Shared test fixtures for Footnoter."""

from __future__ import annotations

from pathlib import Path

import pytest

from footnoter.config import CacheConfig, Config, ModelConfig, RetryConfig


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test manuscripts."""
    return tmp_path


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Provide a test configuration with temp paths and no network retries."""
    return Config(
        model=ModelConfig(base_url="https://llm.test/v1", model="test-model", api_key="sk-test"),
        retry=RetryConfig(
            max_attempts=1,
            base_delay_seconds=0.0,
            max_delay_seconds=0.0,
        ),
        cache=CacheConfig(root=str(tmp_path / "cache")),
    )
