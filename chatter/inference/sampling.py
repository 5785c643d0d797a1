"""
Nucleus (top-p) sampling for chatter.

This module turns a probability distribution over the vocabulary into a
single next token id. Sampling is a pure function of the distribution, the
sampling configuration and a uniform draw in [0, 1).
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import torch


TensorLike = Union[torch.Tensor, Sequence[float]]


@dataclass(frozen=True)
class SamplingConfig:
    """Sampling parameters, fixed for the duration of a generation run."""

    top_p: float = 0.5
    temperature: float = 1.0
    presence_penalty: float = 0.3
    frequency_penalty: float = 0.3

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not 0 < self.top_p <= 1:
            raise ValueError(f"top_p must be in (0, 1], got {self.top_p}")
        if self.temperature <= 0:
            raise ValueError(f"temperature must be positive, got {self.temperature}")

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "SamplingConfig":
        """Create config from dictionary."""
        return cls(**config_dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "top_p": self.top_p,
            "temperature": self.temperature,
            "presence_penalty": self.presence_penalty,
            "frequency_penalty": self.frequency_penalty,
        }


def build_nucleus(probs: TensorLike, top_p: float) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Select the nucleus of a probability distribution.

    Candidates are scanned in order of decreasing probability. A candidate is
    admitted while the mass ranked strictly above it does not exceed ``top_p``,
    so the token that pushes the cumulative mass past the threshold is the
    last one admitted. The nucleus is never empty.

    Args:
        probs: Probabilities of shape (vocab_size,)
        top_p: Cumulative probability threshold (0 < top_p <= 1)

    Returns:
        Tuple of (token ids, probabilities) for the nucleus, sorted by
        decreasing probability. Equal probabilities keep ascending token id.
    """
    probs = torch.as_tensor(probs, dtype=torch.float64).flatten()
    if probs.numel() == 0:
        raise ValueError("Cannot sample from an empty distribution")

    sorted_probs, sorted_ids = torch.sort(probs, descending=True, stable=True)

    # Mass of everything ranked above each candidate
    mass_before = torch.zeros_like(sorted_probs)
    mass_before[1:] = torch.cumsum(sorted_probs, dim=-1)[:-1]

    num_kept = int((mass_before <= top_p).sum().item())
    num_kept = max(num_kept, 1)

    return sorted_ids[:num_kept], sorted_probs[:num_kept]


def sample(
    probs: TensorLike,
    config: SamplingConfig,
    rng_draw: Optional[float] = None,
    generator: Optional[torch.Generator] = None,
) -> int:
    """
    Sample the next token id with nucleus sampling and temperature.

    Args:
        probs: Probabilities of shape (vocab_size,)
        config: Sampling configuration
        rng_draw: Uniform draw in [0, 1). Drawn from ``generator`` if omitted.
        generator: Random number generator used when ``rng_draw`` is omitted

    Returns:
        Sampled token id
    """
    token_ids, nucleus_probs = build_nucleus(probs, config.top_p)

    weights = nucleus_probs.pow(1.0 / config.temperature)
    weights = weights / weights.sum()
    cumulative = torch.cumsum(weights, dim=-1)

    if rng_draw is None:
        rng_draw = torch.rand((), generator=generator, dtype=torch.float64).item()

    hits = torch.nonzero(cumulative >= rng_draw)
    # Rounding can leave the final cumulative value just below the draw
    index = hits[0, 0].item() if hits.numel() > 0 else 0

    return int(token_ids[index].item())


class NucleusSampler:
    """
    Top-p sampler bound to a sampling configuration.

    Holds no state besides the (immutable) configuration, so one instance
    can be shared between runs.
    """

    def __init__(self, config: Optional[SamplingConfig] = None):
        self.config = config or SamplingConfig()

    def __call__(
        self,
        probs: TensorLike,
        rng_draw: Optional[float] = None,
        generator: Optional[torch.Generator] = None,
    ) -> int:
        return sample(probs, self.config, rng_draw=rng_draw, generator=generator)

    def nucleus(self, probs: TensorLike) -> Tuple[torch.Tensor, torch.Tensor]:
        """Return the nucleus this sampler would draw from."""
        return build_nucleus(probs, self.config.top_p)
