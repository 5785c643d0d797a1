"""
chatter: token-generation controller for conversational sequence models.

This package turns the output distribution of an autoregressive model into
text: nucleus sampling with temperature, presence and frequency penalties,
and a generation loop that steps the model until a stop condition fires.
"""

__version__ = "0.1.0"
__author__ = "chatter contributors"

from .inference import (
    ChatSession,
    GenerationConfig,
    GenerationLoop,
    NucleusSampler,
    SamplingConfig,
)

__all__ = [
    "ChatSession",
    "GenerationConfig",
    "GenerationLoop",
    "NucleusSampler",
    "SamplingConfig",
]
