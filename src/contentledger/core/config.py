"""
Pipeline configuration.

Loads settings from a YAML file and applies environment overrides so the same
config file can be used by the batch loop, the admin CLI and tests.
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from contentledger.core.exceptions import InvalidArgumentsError, MissingInputError

DEFAULT_CONFIG_PATH = Path("config/pipeline.yaml")

DEFAULT_CONTENT_FIELDS = [
    "aboutcontent",
    "howtoredeemcontent",
    "promodetailscontent",
    "termscontent",
    "faqcontent",
]

DEFAULT_TIMESTAMP_FIELDS = [
    "generatedAt",
    "updatedAt",
    "ts",
    "modifiedAt",
    "updated_at",
    "modified_at",
]

# Environment variable -> config field
ENV_OVERRIDES = {
    "CONTENTLEDGER_DATA_ROOT": "data_root",
    "CONTENTLEDGER_LOCK_PATH": "lock_path",
    "CONTENTLEDGER_SLEEP_SECONDS": "sleep_seconds",
    "CONTENTLEDGER_DEFAULT_SCOPE": "default_scope",
}


class LedgerPaths(BaseModel):
    """Resolved locations of every durable file the pipeline touches."""

    raw_dir: Path
    master_dir: Path
    success: Path
    reject: Path
    drift: Path
    reject_history: Path
    meta: Path
    manifest: Path
    checkpoint: Path
    lock: Path
    telemetry: Path
    batch_file: Path


class PipelineConfig(BaseModel):
    """
    Settings for one data root.

    Relative paths are resolved against ``data_root``.
    """

    data_root: Path = Path("data")
    raw_dir: Path = Path("content/raw")
    master_dir: Path = Path("content/master")
    checkpoint_path: Path = Path("content/.checkpoint.json")
    lock_path: Path = Path("locks/pipeline.lock")
    batch_file: Path = Path("content/next-batch.txt")

    key_field: str = "key"
    content_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_CONTENT_FIELDS))
    timestamp_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_TIMESTAMP_FIELDS))
    signature_mode: Literal["stat", "sha256"] = "stat"

    scopes: dict[str, Path] = Field(
        default_factory=lambda: {
            "all": Path("ground_truth/needs-content.txt"),
            "promo": Path("ground_truth/promo-keys.txt"),
        }
    )
    default_scope: str = "promo"
    manual_file: Path = Path("manual/manual-content.txt")
    deny_file: Path = Path("manual/denylist.txt")

    audit_sample_size: int = Field(20, ge=1, le=1000)
    sleep_seconds: float = Field(20.0, ge=0)
    metrics_textfile: Path | None = None
    telemetry_enabled: bool = True

    @field_validator("content_fields")
    @classmethod
    def check_content_fields(cls, v):
        if not v:
            raise ValueError("content_fields must name at least one field")
        return v

    @field_validator("default_scope")
    @classmethod
    def check_default_scope(cls, v, info):
        scopes = info.data.get("scopes") or {}
        if scopes and v not in scopes:
            raise ValueError(f"default_scope '{v}' is not one of the configured scopes")
        return v

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.data_root / path

    @property
    def paths(self) -> LedgerPaths:
        master = self.resolve(self.master_dir)
        return LedgerPaths(
            raw_dir=self.resolve(self.raw_dir),
            master_dir=master,
            success=master / "successes.jsonl",
            reject=master / "rejects.jsonl",
            drift=master / "updates.jsonl",
            reject_history=master / "rejects.history.jsonl",
            meta=master / "meta-runs.jsonl",
            manifest=master / ".processed_raw_files.json",
            checkpoint=self.resolve(self.checkpoint_path),
            lock=self.resolve(self.lock_path),
            telemetry=master / ".consolidation-telemetry.jsonl",
            batch_file=self.resolve(self.batch_file),
        )

    def scope_file(self, scope: str) -> Path:
        if scope not in self.scopes:
            known = ", ".join(sorted(self.scopes))
            raise InvalidArgumentsError(f"Unknown scope '{scope}'. Use one of: {known}")
        return self.resolve(self.scopes[scope])


class ConfigLoader:
    """
    Loads PipelineConfig from a YAML file.

    Expected YAML format:
    ```yaml
    data_root: data
    key_field: slug
    signature_mode: stat
    scopes:
      all: ground_truth/needs-content.txt
      promo: ground_truth/promo-keys.txt
    default_scope: promo
    content_fields:
      - aboutcontent
      - faqcontent
    ```
    """

    def __init__(self, config_path: str | Path, env_file: str | Path | None = ".env"):
        """
        Initialize the config loader.

        Args:
            config_path: Path to the YAML configuration file
            env_file: Optional dotenv file loaded before env overrides apply
        """
        self.config_path = Path(config_path)
        self.env_file = Path(env_file) if env_file else None
        if not self.config_path.exists():
            raise MissingInputError(f"Configuration file not found: {config_path}")

    def load(self) -> PipelineConfig:
        """
        Parse the YAML file and apply environment overrides.

        Raises:
            InvalidArgumentsError: If the YAML or a value is invalid
        """
        with open(self.config_path) as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise InvalidArgumentsError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise InvalidArgumentsError(f"{self.config_path} must contain a mapping")

        return build_config(raw, env_file=self.env_file)


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    merged = dict(raw)
    for env_name, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            merged[field_name] = value
    return merged


def build_config(raw: dict[str, Any] | None = None, env_file: Path | None = None) -> PipelineConfig:
    """Validate a raw settings mapping, after loading ``env_file`` and env overrides."""
    if env_file is not None and env_file.exists():
        load_dotenv(env_file, override=False)
    try:
        return PipelineConfig(**_apply_env_overrides(raw or {}))
    except ValidationError as e:
        raise InvalidArgumentsError(f"Invalid pipeline configuration: {e}") from e


def load_config(config_path: str | Path | None = None) -> PipelineConfig:
    """
    Load configuration from ``config_path``, or from the default location.

    Falls back to built-in defaults (plus env overrides) when no path is given
    and the default file does not exist.
    """
    if config_path is not None:
        return ConfigLoader(config_path).load()
    if DEFAULT_CONFIG_PATH.exists():
        return ConfigLoader(DEFAULT_CONFIG_PATH).load()
    return build_config({}, env_file=Path(".env"))
