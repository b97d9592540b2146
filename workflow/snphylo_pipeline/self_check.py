"""Report whether the external programs and R scripts can be found."""

from __future__ import annotations

from typing import List, Tuple

from .config import PipelineConfig
from .errors import ToolNotFoundError
from .tools import SCRIPTS, TOOLS, resolve_executable, resolve_script


OK_MARK = "[OK]"
MISS_MARK = "[MISSING]"


def collect_checks(config: PipelineConfig) -> List[Tuple[str, str, bool]]:
    checks: List[Tuple[str, str, bool]] = []
    for tool, spec in TOOLS.items():
        try:
            checks.append((spec.label, resolve_executable(config, tool), True))
        except ToolNotFoundError as exc:
            checks.append((spec.label, str(exc), False))
    for name, filename in SCRIPTS.items():
        try:
            checks.append((filename, str(resolve_script(config, name)), True))
        except ToolNotFoundError as exc:
            checks.append((filename, str(exc), False))
    return checks


def run_self_check(config: PipelineConfig) -> int:
    print("Checking external programs and scripts...")
    ok = True
    for label, detail, found in collect_checks(config):
        print(f"{OK_MARK if found else MISS_MARK} {label}: {detail}")
        ok = ok and found
    return 0 if ok else 1
