from __future__ import annotations

import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from .config import PipelineConfig
from .errors import ToolError, ToolNotFoundError
from .utils import get_logger


logger = get_logger()


@dataclass(frozen=True)
class ToolSpec:
    config_key: str
    env_vars: tuple[str, ...]
    default_name: str
    label: str


TOOLS: Dict[str, ToolSpec] = {
    "rscript": ToolSpec("rscript_executable", ("RSCRIPT_PATH", "RSCRIPT_EXECUTABLE"), "Rscript", "Rscript"),
    "muscle": ToolSpec("muscle_executable", ("MUSCLE_PATH", "MUSCLE_EXECUTABLE"), "muscle", "MUSCLE"),
    "dnaml": ToolSpec("dnaml_executable", ("DNAML_PATH", "DNAML_EXECUTABLE"), "dnaml", "PHYLIP dnaml"),
}

SCRIPTS: Dict[str, str] = {
    "sequence_generator": "generate_snp_sequence.R",
    "bootstrap_tree": "determine_bs_tree.R",
}

SCRIPTS_DIR_ENV = "SNPHYLO_SCRIPTS_DIR"
PYTHON_ENV = "SNPHYLO_PYTHON"


def resolve_executable(config: Optional[PipelineConfig], tool: str) -> str:
    spec = TOOLS[tool]
    candidate = None
    if config is not None:
        configured = config.get("tools", spec.config_key)
        if configured:
            configured = str(configured)
            if os.sep in configured or "/" in configured:
                resolved = config.resolve_path(configured)
                if resolved is not None and resolved.is_file():
                    candidate = str(resolved)
            else:
                candidate = shutil.which(configured)
            if not candidate:
                raise ToolNotFoundError(
                    f"{spec.label} executable configured as tools.{spec.config_key} was not found: {configured}"
                )
    if not candidate:
        for env_var in spec.env_vars:
            if os.environ.get(env_var):
                candidate = os.environ[env_var]
                break
    if not candidate:
        found = shutil.which(spec.default_name)
        if not found:
            env_names = "/".join(spec.env_vars)
            raise ToolNotFoundError(
                f"{spec.label} executable not found. Add it to PATH, set {env_names}, "
                f"or configure tools.{spec.config_key}."
            )
        candidate = found
    return candidate


def resolve_python(config: Optional[PipelineConfig]) -> str:
    if config is not None and config.get("tools", "python_executable"):
        return str(config.get("tools", "python_executable"))
    return os.environ.get(PYTHON_ENV) or sys.executable


def resolve_script(config: PipelineConfig, name: str) -> Path:
    filename = SCRIPTS[name]
    configured = config.path("scripts", name)
    if configured is not None:
        candidates = [configured]
    else:
        candidates = []
        scripts_dir = os.environ.get(SCRIPTS_DIR_ENV)
        if scripts_dir:
            candidates.append(Path(scripts_dir).expanduser() / filename)
        candidates.append(config.root / "scripts" / filename)

    for candidate in candidates:
        if candidate.is_file():
            return candidate
    raise ToolNotFoundError(
        f"R script {filename} not found (looked in: {', '.join(str(c) for c in candidates)}). "
        f"Set scripts.{name} in the config or {SCRIPTS_DIR_ENV}."
    )


def package_env() -> Dict[str, str]:
    """Environment that lets a child interpreter import this package."""
    env = dict(os.environ)
    package_parent = str(Path(__file__).resolve().parent.parent)
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = package_parent if not existing else os.pathsep.join([package_parent, existing])
    return env


def run_tool(
    cmd: Sequence[object],
    *,
    label: str,
    cwd: Optional[Path] = None,
    stdin_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> None:
    args: List[str] = [str(part) for part in cmd]
    logger.info("Running: %s", " ".join(args))
    try:
        subprocess.run(
            args,
            check=True,
            cwd=str(cwd) if cwd is not None else None,
            input=stdin_text,
            text=True,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as exc:
        raise ToolNotFoundError(f"{label} could not be started: {args[0]} not found", cmd=args) from exc
    except PermissionError as exc:
        raise ToolNotFoundError(f"{label} could not be started: {args[0]} is not executable", cmd=args) from exc
    except subprocess.CalledProcessError as exc:
        raise ToolError(
            f"{label} failed with exit status {exc.returncode}: {' '.join(args)}",
            cmd=args,
            returncode=exc.returncode,
        ) from exc
