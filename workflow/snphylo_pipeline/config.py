from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import PipelineError


INPUT_FORMATS = ("vcf", "hapmap", "gds")

DEFAULT_LIMITS: Dict[str, int] = {
    "min_input_lines": 50_000,
    "min_filtered_records": 500,
    "min_sequence_length": 500,
    "max_sequence_length": 50_000,
}


class ConfigError(PipelineError):
    """Raised when the pipeline configuration is invalid."""


@dataclass(frozen=True)
class PipelineConfig:
    data: Dict[str, Any]
    root: Path
    config_path: Optional[Path] = None

    @classmethod
    def load(cls, path: Path | str) -> "PipelineConfig":
        config_path = Path(path).expanduser().resolve()
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            data = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse YAML config {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigError("Top-level YAML structure must be a mapping")

        root_ref = data.get("project_root", ".")
        root = (config_path.parent / root_ref).resolve()
        return cls(data=data, root=root, config_path=config_path)

    @classmethod
    def empty(cls, root: Path | str | None = None) -> "PipelineConfig":
        base = Path(root) if root is not None else Path.cwd()
        return cls(data={}, root=base.resolve())

    def get(self, *keys: str, default: Any = None) -> Any:
        node: Any = self.data
        for key in keys:
            if isinstance(node, dict) and key in node:
                node = node[key]
            else:
                return default
        return node

    def require(self, *keys: str) -> Any:
        value = self.get(*keys)
        if value is None:
            dotted = ".".join(keys)
            raise ConfigError(f"Missing required config key: {dotted}")
        return value

    def has(self, *keys: str) -> bool:
        sentinel = object()
        return self.get(*keys, default=sentinel) is not sentinel

    def resolve_path(self, value: Optional[str], create_parent: bool = False) -> Optional[Path]:
        if value in (None, ""):
            return None
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = (self.root / path).resolve()
        if create_parent:
            path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def path(self, *keys: str, create_parent: bool = False, default: Optional[str] = None) -> Optional[Path]:
        raw = self.get(*keys, default=default)
        return self.resolve_path(raw, create_parent=create_parent)

    def limit(self, name: str) -> int:
        if name not in DEFAULT_LIMITS:
            raise ConfigError(f"Unknown limit: {name}")
        value = self.get("limits", name, default=DEFAULT_LIMITS[name])
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"limits.{name} must be an integer, got {value!r}")
        if value <= 0:
            raise ConfigError(f"limits.{name} must be positive, got {value}")
        return value



load_config = PipelineConfig.load


@dataclass(frozen=True)
class RunSettings:
    """Options for a single run, as given on the command line."""

    input_format: str
    input_path: Path
    min_depth: int = 5
    max_low_percent: float = 5.0
    ld_threshold: float = 0.1
    maf_threshold: float = 0.1
    missing_rate: float = 0.1
    outgroup: Optional[str] = None
    prefix: str = "snphylo.output"
    skip_filter: bool = False
    num_chromosomes: int = 12
    muscle_max_iters: int = 100
    bootstrap: bool = False
    bootstrap_replicates: int = 100

    def __post_init__(self) -> None:
        if self.input_format not in INPUT_FORMATS:
            raise ConfigError(f"Unsupported input format: {self.input_format}")

    @property
    def output_prefix(self) -> Path:
        return Path(self.prefix).expanduser().resolve()

    @property
    def output_dir(self) -> Path:
        return self.output_prefix.parent

    def artifact(self, suffix: str) -> Path:
        prefix = self.output_prefix
        return prefix.with_name(f"{prefix.name}{suffix}")

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["input_path"] = str(self.input_path)
        return payload


@dataclass
class RunContext:
    settings: RunSettings
    config: PipelineConfig
    artifacts: Dict[str, Path] = field(default_factory=dict)
