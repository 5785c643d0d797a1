"""
Hugging Face adapters for the chatter collaborator interfaces.

Wraps a ``transformers`` causal language model and tokenizer so they can
drive the generation loop. The model's key/value cache plays the role of the
conversation state: each forward pass feeds only the new tokens and carries
the cache forward.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import torch
import torch.nn.functional as F
from transformers import AutoModelForCausalLM, AutoTokenizer

from ..inference.errors import ModelError, TokenizerError

logger = logging.getLogger(__name__)


@dataclass
class CausalLMState:
    """Per-conversation key/value cache of a causal language model."""

    past_key_values: Optional[Any] = None
    num_tokens: int = 0


class CausalLMSequenceModel:
    """
    Sequence model backed by a ``transformers`` causal LM.

    Forward passes run under ``torch.no_grad()`` with the cache enabled, and
    return the logits of the last position on the CPU as float32.
    """

    def __init__(self, model: torch.nn.Module, device: Optional[torch.device] = None):
        self.model = model
        self.device = device or next(model.parameters()).device
        self.model.eval()

    @property
    def max_positions(self) -> Optional[int]:
        """Length of the model's position table, if the config declares one."""
        config = getattr(self.model, "config", None)
        max_positions = getattr(config, "max_position_embeddings", None)
        if isinstance(max_positions, int):
            return max_positions
        return None

    def create_conversation_state(self) -> CausalLMState:
        return CausalLMState()

    def forward(self, step_input: Sequence[int], state: CausalLMState) -> torch.Tensor:
        if len(step_input) == 0:
            raise ModelError("Forward pass needs at least one input token")

        max_positions = self.max_positions
        if max_positions is not None and state.num_tokens + len(step_input) > max_positions:
            raise ModelError(
                f"Context window of {max_positions} positions exhausted",
                details={"num_input_tokens": len(step_input), "cached_tokens": state.num_tokens},
            )

        input_ids = torch.tensor([list(step_input)], dtype=torch.long, device=self.device)

        try:
            with torch.no_grad():
                outputs = self.model(
                    input_ids,
                    past_key_values=state.past_key_values,
                    use_cache=True,
                )
        # Embedding lookups past the vocabulary or position table raise IndexError
        except (RuntimeError, IndexError) as e:
            raise ModelError(
                f"Forward pass failed: {e}",
                details={"num_input_tokens": len(step_input), "cached_tokens": state.num_tokens},
            ) from e

        state.past_key_values = outputs.past_key_values
        state.num_tokens += len(step_input)

        return outputs.logits[0, -1, :].float().cpu()

    def normalize(self, logits: torch.Tensor) -> torch.Tensor:
        probs = F.softmax(logits.float(), dim=-1)
        if not torch.isfinite(probs).all():
            raise ModelError("Softmax produced non-finite probabilities", recoverable=True)
        return probs


class HFTokenizer:
    """Byte-oriented wrapper around a ``transformers`` tokenizer."""

    def __init__(self, tokenizer: Any):
        self.tokenizer = tokenizer

    @property
    def vocab_size(self) -> int:
        return len(self.tokenizer)

    def encode(self, text: bytes) -> List[int]:
        try:
            return self.tokenizer.encode(text.decode("utf-8"), add_special_tokens=False)
        except UnicodeDecodeError as e:
            raise TokenizerError(f"Prompt is not valid UTF-8: {e}") from e

    def decode(self, tokens: Sequence[int]) -> bytes:
        text = self.tokenizer.decode(list(tokens))
        # Byte-level vocabularies split multi-byte characters across tokens
        if "\ufffd" in text:
            raise TokenizerError(
                "Tokens decode to an incomplete UTF-8 sequence",
                details={"tokens": list(tokens)},
                recoverable=True,
            )
        return text.encode("utf-8")


def load_pretrained(
    model_name: str,
    tokenizer_name: Optional[str] = None,
    device: Optional[torch.device] = None,
) -> Tuple[CausalLMSequenceModel, HFTokenizer]:
    """
    Load a pretrained causal LM and its tokenizer.

    Args:
        model_name: Model name or path understood by ``from_pretrained``
        tokenizer_name: Tokenizer name or path (defaults to ``model_name``)
        device: Device to load model on

    Returns:
        Tuple of (sequence model, tokenizer)
    """
    logger.info("Loading model %s", model_name)
    model = AutoModelForCausalLM.from_pretrained(model_name)
    if device is not None:
        model = model.to(device)

    tokenizer = AutoTokenizer.from_pretrained(tokenizer_name or model_name)

    return CausalLMSequenceModel(model, device), HFTokenizer(tokenizer)
