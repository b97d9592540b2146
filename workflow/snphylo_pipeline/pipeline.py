from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional, Sequence, Tuple

from .config import PipelineConfig, RunContext, RunSettings
from .progress import ProgressLog
from .steps import STEP_FUNCTIONS
from .utils import LOG_DATEFMT, LOG_FORMAT, get_logger


STEP_ORDER: Sequence[str] = (
    "step01_validate_input",
    "step02_filter_genotypes",
    "step03_generate_sequences",
    "step04_check_sequence_length",
    "step05_align_sequences",
    "step06_build_ml_tree",
    "step07_collect_tree_outputs",
    "step08_bootstrap_tree",
)

RESULT_ARTIFACTS = ("ml_report", "ml_tree", "bs_tree", "bs_plot")


class SNPhyloPipeline:
    def __init__(self, settings: RunSettings, config: Optional[PipelineConfig] = None):
        self.settings = settings
        self.config = config if config is not None else PipelineConfig.empty()
        self.logger = get_logger()

    def skip_reason(self, step: str) -> Optional[str]:
        if step == "step02_filter_genotypes":
            if self.settings.input_format == "gds":
                return "GDS input is not filtered"
            if self.settings.skip_filter:
                return "low-quality filter disabled (-r)"
        if step == "step08_bootstrap_tree" and not self.settings.bootstrap:
            return "bootstrap analysis not requested (-b)"
        return None

    def planned_steps(self) -> List[Tuple[str, Optional[str]]]:
        return [(step, self.skip_reason(step)) for step in STEP_ORDER]

    def run(self, dry_run: bool = False) -> RunContext:
        context = RunContext(settings=self.settings, config=self.config)
        plan = self.planned_steps()
        run_order = [step for step, reason in plan if reason is None]

        log_handler: logging.Handler | None = None
        progress: ProgressLog | None = None
        current_step: Optional[str] = None
        try:
            log_dir = self.settings.output_dir / "run_history"
            log_dir.mkdir(parents=True, exist_ok=True)
            start_time = datetime.now()
            suffix = "_dryrun" if dry_run else ""
            session_name = f"run_{start_time.strftime('%Y%m%d_%H%M%S')}{suffix}"
            progress = ProgressLog(
                log_dir / f"{session_name}.json",
                session=session_name,
                dry_run=dry_run,
                run_order=run_order,
                settings=self.settings.as_dict(),
                started_at=start_time,
            )

            log_handler = logging.FileHandler(log_dir / f"{session_name}.log", encoding="utf-8")
            log_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
            self.logger.addHandler(log_handler)
            self.logger.info(
                "Run started (dry_run=%s, input=%s %s): %s",
                dry_run,
                self.settings.input_format,
                self.settings.input_path,
                ", ".join(run_order),
            )

            for step, reason in plan:
                if reason is not None:
                    progress.skip_step(step, reason)
                    self.logger.info("Skipping %s (%s)", step, reason)
                    continue
                if dry_run:
                    progress.plan_step(step)
                    self.logger.info("[dry-run] %s", step)
                    continue
                current_step = step
                progress.start_step(step)
                STEP_FUNCTIONS[step](context)
                progress.complete_step(step)
                current_step = None

            if dry_run:
                progress.finish(status="dry_run")
                self.logger.info("Dry run complete")
                return context

            progress.record_artifacts(context.artifacts)
            progress.finish(status="completed")
            for key in RESULT_ARTIFACTS:
                if key in context.artifacts:
                    self.logger.info("Output: %s", context.artifacts[key])
            self.logger.info("Run complete")
            return context
        except Exception as exc:
            if progress is not None:
                # Best effort: a failed progress write must not replace the original error.
                try:
                    if current_step is not None:
                        progress.fail_step(current_step, message=str(exc))
                    progress.record_artifacts(context.artifacts)
                    progress.finish(status="failed", message=str(exc))
                except Exception as log_exc:
                    self.logger.warning("Could not record failure in %s: %s", progress.path, log_exc)
            raise
        finally:
            if log_handler is not None:
                self.logger.removeHandler(log_handler)
                log_handler.close()


__all__ = ["SNPhyloPipeline", "STEP_ORDER"]
