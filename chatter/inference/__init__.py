"""Inference components for chatter."""

from .errors import ChatterError, ModelError, TokenizerError, PreconditionError, RunInProgressError
from .sampling import SamplingConfig, NucleusSampler, build_nucleus, sample
from .penalties import OccurrenceTable, apply_penalties
from .generator import (
    GenerationConfig,
    GenerationLoop,
    GenerationResult,
    GenerationState,
    LoopState,
    RunFailed,
    StopReason,
    format_prompt,
)
from .session import ChatSession, PromptSubmitted

__all__ = [
    "ChatterError",
    "ModelError",
    "TokenizerError",
    "PreconditionError",
    "RunInProgressError",
    "SamplingConfig",
    "NucleusSampler",
    "build_nucleus",
    "sample",
    "OccurrenceTable",
    "apply_penalties",
    "GenerationConfig",
    "GenerationLoop",
    "GenerationResult",
    "GenerationState",
    "LoopState",
    "RunFailed",
    "StopReason",
    "format_prompt",
    "ChatSession",
    "PromptSubmitted",
]
