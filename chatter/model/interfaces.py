"""
Collaborator interfaces consumed by the generation loop.

The generation loop never computes logits or tokenizes text itself. Anything
implementing these protocols can be plugged in: the Hugging Face adapters in
``chatter.model.hf`` or a stub in tests.
"""

from typing import Any, List, Protocol, Sequence

import torch


class SequenceModel(Protocol):
    """Autoregressive sequence model with opaque per-conversation state."""

    def create_conversation_state(self) -> Any:
        """Create fresh conversation state for a generation run."""
        ...

    def forward(self, step_input: Sequence[int], state: Any) -> torch.Tensor:
        """
        Run the model on ``step_input`` and advance ``state`` in place.

        Returns:
            Logits of shape (vocab_size,) for the next token

        Raises:
            ModelError: If the forward pass fails
        """
        ...

    def normalize(self, logits: torch.Tensor) -> torch.Tensor:
        """
        Turn logits into a probability distribution.

        Raises:
            ModelError: If the logits cannot be normalized
        """
        ...


class Tokenizer(Protocol):
    """Text <-> token id conversion."""

    def encode(self, text: bytes) -> List[int]:
        """
        Raises:
            TokenizerError: If the text cannot be encoded
        """
        ...

    def decode(self, tokens: Sequence[int]) -> bytes:
        """
        Raises:
            TokenizerError: If the tokens cannot be decoded
        """
        ...
