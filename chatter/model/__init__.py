"""Sequence model and tokenizer collaborators for chatter."""

from .interfaces import SequenceModel, Tokenizer
from .hf import CausalLMSequenceModel, CausalLMState, HFTokenizer, load_pretrained

__all__ = [
    "SequenceModel",
    "Tokenizer",
    "CausalLMSequenceModel",
    "CausalLMState",
    "HFTokenizer",
    "load_pretrained",
]
