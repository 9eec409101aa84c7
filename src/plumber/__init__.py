from .dsl import script, plunger, inline, step, axis, git, local_dir, notifier, phase, pipeline, PhaseBuilder, build
from .runner import run_pipeline
from .model import PipelineConfig, PhaseSpec, Result

__all__ = [
    "script", "plunger", "inline", "step", "axis", "git", "local_dir", "notifier",
    "phase", "pipeline", "PhaseBuilder", "build", "run_pipeline",
    "PipelineConfig", "PhaseSpec", "Result",
]
