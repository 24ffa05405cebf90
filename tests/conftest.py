"""
Pytest configuration and fixtures for contentledger tests

This module provides shared fixtures for unit, integration, and E2E tests.
Every test gets its own data root under tmp_path, so nothing touches real data.
"""
import json
import logging
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from contentledger.core.config import ENV_OVERRIDES, PipelineConfig, build_config


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests for a single module, no filesystem layout needed"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests running one stage against a temporary data root"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that run full pipeline cycles or the CLIs"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# LOGGING / ENVIRONMENT
# =======================

@pytest.fixture(autouse=True)
def propagate_logs():
    """Let caplog see records from the contentledger logger hierarchy"""
    root = logging.getLogger("contentledger")
    previous = root.propagate
    root.propagate = True
    yield
    root.propagate = previous


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Environment overrides from the developer's shell must not leak into tests"""
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


# =======================
# DATA ROOT FIXTURES
# =======================

@pytest.fixture
def data_root(tmp_path) -> Path:
    """
    Empty data root with the default directory layout

    Returns:
        Path to the data root
    """
    root = tmp_path / "data"
    for sub in ("content/raw", "content/master", "ground_truth", "manual", "locks"):
        (root / sub).mkdir(parents=True)
    return root


@pytest.fixture
def config(data_root) -> PipelineConfig:
    """Config pointing at the temporary data root (no env file)"""
    return build_config({"data_root": str(data_root)}, env_file=None)


@pytest.fixture
def write_jsonl() -> Callable[[Path, Iterable[Any]], Path]:
    """
    Write rows to a JSONL file; str rows are written verbatim (for malformed lines)
    """
    def _write(path: Path, rows: Iterable[Any]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = []
        for row in rows:
            if isinstance(row, str):
                lines.append(row)
            else:
                lines.append(json.dumps(row, separators=(",", ":")))
        path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def read_jsonl() -> Callable[[Path], list[dict]]:
    def _read(path: Path) -> list[dict]:
        if not path.exists():
            return []
        return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]

    return _read


@pytest.fixture
def population(config) -> Callable[..., None]:
    """
    Write ground-truth key lists for the default scope

    Usage:
        population(["a", "b"], manual=["c"], deny=["d"])
    """
    def _write(keys: Iterable[str], manual: Iterable[str] = (), deny: Iterable[str] = ()) -> None:
        config.scope_file(config.default_scope).write_text("\n".join(keys) + "\n", encoding="utf-8")
        config.resolve(config.manual_file).write_text("\n".join(manual) + "\n", encoding="utf-8")
        config.resolve(config.deny_file).write_text("\n".join(deny) + "\n", encoding="utf-8")

    return _write


@pytest.fixture
def sample_success() -> dict:
    """A complete success payload"""
    return {
        "key": "acme-pro",
        "aboutcontent": "<p>Acme Pro makes widgets.</p>",
        "howtoredeemcontent": "<p>Enter the code at checkout.</p>",
        "promodetailscontent": "<p>10% off.</p>",
        "termscontent": "<p>One per customer.</p>",
        "faqcontent": [{"q": "Is there a code?", "a": "Yes"}],
        "generatedAt": "2025-11-04T18:09:24Z",
    }
