"""
Repetition penalties for chatter.

Tracks how often each token has been emitted during a run and lowers the
logits of tokens that were already emitted.
"""

from typing import Dict, Iterator, Sequence, Tuple, Union

import torch

from .sampling import SamplingConfig


class OccurrenceTable:
    """
    Mapping from emitted token id to emission count for one generation run.

    By default a token's count is fixed at 1 once it has been seen, so the
    frequency penalty acts as a second presence penalty. With
    ``accumulate=True`` every emission increments the count.
    """

    def __init__(self, accumulate: bool = False):
        self.accumulate = accumulate
        self._counts: Dict[int, int] = {}

    def record(self, token_id: int) -> int:
        """
        Record an emission of ``token_id``.

        Returns:
            The count stored for the token after recording
        """
        token_id = int(token_id)
        if self.accumulate:
            count = self._counts.get(token_id, 0) + 1
        else:
            count = self._counts.get(token_id, 1)
        self._counts[token_id] = count
        return count

    def count(self, token_id: int) -> int:
        return self._counts.get(int(token_id), 0)

    def items(self) -> Iterator[Tuple[int, int]]:
        return iter(self._counts.items())

    def clear(self):
        self._counts.clear()

    def __contains__(self, token_id: int) -> bool:
        return int(token_id) in self._counts

    def __len__(self) -> int:
        return len(self._counts)

    def __repr__(self) -> str:
        return f"OccurrenceTable({self._counts!r}, accumulate={self.accumulate})"


def apply_penalties(
    logits: Union[torch.Tensor, Sequence[float]],
    occurrences: OccurrenceTable,
    config: SamplingConfig,
    eos_token_id: int = 0,
) -> torch.Tensor:
    """
    Apply presence and frequency penalties to logits.

    The end-of-sequence logit is always forced to -inf. Every token in the
    occurrence table is lowered by ``presence_penalty + count * frequency_penalty``.
    Tensors are modified in place.

    Args:
        logits: Model logits of shape (vocab_size,)
        occurrences: Tokens emitted so far in this run
        config: Sampling configuration holding the penalty weights
        eos_token_id: Token id of the end-of-sequence sentinel

    Returns:
        Penalized logits
    """
    if not isinstance(logits, torch.Tensor):
        logits = torch.tensor(logits, dtype=torch.float32)

    logits[eos_token_id] = float('-inf')

    for token_id, count in occurrences.items():
        penalty = config.presence_penalty + count * config.frequency_penalty
        logits[token_id] -= penalty

    return logits
