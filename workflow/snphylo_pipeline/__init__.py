from .config import PipelineConfig, RunSettings, load_config
from .pipeline import SNPhyloPipeline

__all__ = ["PipelineConfig", "RunSettings", "load_config", "SNPhyloPipeline"]
