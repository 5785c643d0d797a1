"""
Autoregressive generation loop for chatter.

A run formats the user prompt as a two-speaker conversation, encodes it, and
then steps the sequence model one token at a time: forward pass, repetition
penalties, normalization, nucleus sampling and decoding. The run ends on the
end-of-sequence token, on the stop sequence appearing in the output, or when
the token budget is spent.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import torch

from ..model.interfaces import SequenceModel, Tokenizer
from .errors import ModelError, PreconditionError, RunInProgressError, TokenizerError
from .penalties import OccurrenceTable, apply_penalties
from .sampling import NucleusSampler, SamplingConfig

logger = logging.getLogger(__name__)


class LoopState(Enum):
    """Lifecycle of a generation run."""

    IDLE = "idle"
    ENCODING = "encoding"
    STEPPING = "stepping"
    DONE = "done"


class StopReason(Enum):
    """Why a successful run stopped."""

    EOS = "eos"
    STOP_SEQUENCE = "stop_sequence"
    MAX_TOKENS = "max_tokens"


@dataclass
class GenerationConfig:
    """Configuration for a generation run."""

    # Generation parameters
    max_tokens: int = 1024
    stop_sequence: str = "\n\n"
    eos_token_id: int = 0

    # Conversation template
    user_label: str = "User"
    assistant_label: str = "Assistant"

    # Penalty bookkeeping
    accumulate_counts: bool = False

    # Recovery
    max_step_retries: int = 8

    # Reproducibility
    seed: Optional[int] = None

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        if self.max_step_retries < 0:
            raise ValueError(f"max_step_retries must be non-negative, got {self.max_step_retries}")
        if not self.stop_sequence:
            raise ValueError("stop_sequence must not be empty")

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "GenerationConfig":
        """Create config from dictionary."""
        return cls(**config_dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "max_tokens": self.max_tokens,
            "stop_sequence": self.stop_sequence,
            "eos_token_id": self.eos_token_id,
            "user_label": self.user_label,
            "assistant_label": self.assistant_label,
            "accumulate_counts": self.accumulate_counts,
            "max_step_retries": self.max_step_retries,
            "seed": self.seed,
        }


@dataclass
class GenerationState:
    """Mutable bookkeeping of the run in progress."""

    step_input: List[int]
    occurrences: OccurrenceTable
    text: str = ""
    tokens: List[int] = field(default_factory=list)
    num_tokens: int = 0


@dataclass
class GenerationResult:
    """Output of a run that reached a stop condition."""

    text: str
    num_tokens: int
    stop_reason: StopReason
    tokens: List[int] = field(default_factory=list)
    generation_time: float = 0.0

    @property
    def tokens_per_second(self) -> float:
        if self.generation_time <= 0:
            return 0.0
        return self.num_tokens / self.generation_time


@dataclass
class RunFailed:
    """Output of a run that was abandoned before reaching a stop condition."""

    reason: str
    error: Optional[Exception] = None


RunOutcome = Union[GenerationResult, RunFailed]


def format_prompt(prompt: str, user_label: str = "User", assistant_label: str = "Assistant") -> str:
    """Wrap a user prompt in the two-speaker conversation template."""
    return f"{user_label}: {prompt}\n\n{assistant_label}:"


class GenerationLoop:
    """
    Drives a sequence model one token at a time for a single prompt.

    Only one run can be in flight per loop. Each run gets its own
    conversation state from the model, which is dropped when the run ends,
    whether it succeeded, failed or was cancelled.
    """

    def __init__(
        self,
        model: Optional[SequenceModel],
        tokenizer: Optional[Tokenizer],
        sampling_config: Optional[SamplingConfig] = None,
        config: Optional[GenerationConfig] = None,
    ):
        if model is None:
            raise PreconditionError("sequence model")
        if tokenizer is None:
            raise PreconditionError("tokenizer")

        self.model = model
        self.tokenizer = tokenizer
        self.sampler = NucleusSampler(sampling_config)
        self.config = config or GenerationConfig()

        self.generator = torch.Generator()
        if self.config.seed is not None:
            self.generator.manual_seed(self.config.seed)
        else:
            self.generator.seed()

        self._state = LoopState.IDLE
        self._run_lock = threading.Lock()
        self._cancel_requested = threading.Event()

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def sampling_config(self) -> SamplingConfig:
        return self.sampler.config

    def cancel(self):
        """
        Ask the run in flight to stop before its next step.

        A cancel requested while no run is in flight applies to the next run.
        """
        self._cancel_requested.set()

    def clear_cancel(self):
        """Withdraw a cancel request that no run has consumed yet."""
        self._cancel_requested.clear()

    def run(
        self,
        prompt: str,
        on_token: Optional[Callable[[int, str], None]] = None,
    ) -> RunOutcome:
        """
        Generate a reply to ``prompt``.

        Args:
            prompt: User prompt text
            on_token: Called with each sampled token id and its decoded text
                (empty when the token did not decode)

        Returns:
            GenerationResult on success, RunFailed if the run was abandoned

        Raises:
            RunInProgressError: If another run is still in flight
        """
        if not self._run_lock.acquire(blocking=False):
            raise RunInProgressError(
                "A generation run is already in progress",
                details={"state": self._state.value},
            )

        try:
            outcome = self._run(prompt, on_token)
        finally:
            self._state = LoopState.DONE
            self._cancel_requested.clear()
            self._run_lock.release()

        if isinstance(outcome, RunFailed):
            logger.error("Generation run failed: %s", outcome.reason)
        else:
            logger.info(
                "Generated %d tokens in %.2fs (%s)",
                outcome.num_tokens,
                outcome.generation_time,
                outcome.stop_reason.value,
            )
        return outcome

    def _run(self, prompt: str, on_token: Optional[Callable[[int, str], None]]) -> RunOutcome:
        self._state = LoopState.ENCODING

        text = format_prompt(prompt, self.config.user_label, self.config.assistant_label)
        try:
            prompt_tokens = self.tokenizer.encode(text.encode("utf-8"))
        except TokenizerError as e:
            return RunFailed(f"Failed to encode prompt: {e}", e)

        if len(prompt_tokens) == 0:
            return RunFailed("Prompt encoded to no tokens")

        conversation = self.model.create_conversation_state()
        state = GenerationState(
            step_input=list(prompt_tokens),
            occurrences=OccurrenceTable(accumulate=self.config.accumulate_counts),
        )
        self._state = LoopState.STEPPING
        logger.debug("Encoded prompt into %d tokens", len(prompt_tokens))

        start_time = time.time()
        retries = 0
        stop_reason = None

        while stop_reason is None:
            if self._cancel_requested.is_set():
                return RunFailed("cancelled")

            try:
                logits = self.model.forward(state.step_input, conversation)
            except ModelError as e:
                return RunFailed(f"Forward pass failed: {e}", e)

            logits = apply_penalties(
                logits,
                state.occurrences,
                self.sampler.config,
                eos_token_id=self.config.eos_token_id,
            )

            try:
                probs = self.model.normalize(logits)
            except ModelError as e:
                retries += 1
                if retries > self.config.max_step_retries:
                    return RunFailed(f"Normalization failed {retries} times in a row: {e}", e)
                logger.warning("Normalization failed at step %d, retrying: %s", state.num_tokens, e)
                continue
            retries = 0

            token_id = self.sampler(probs, generator=self.generator)

            piece = self._decode(token_id)
            if piece is not None:
                state.text += piece

            state.occurrences.record(token_id)
            state.step_input = [token_id]
            state.tokens.append(token_id)
            state.num_tokens += 1

            logger.debug("Step %d sampled token %d", state.num_tokens, token_id)
            if on_token is not None:
                on_token(token_id, piece or "")

            stop_reason = self._check_stop(token_id, state)

        return GenerationResult(
            text=state.text,
            num_tokens=state.num_tokens,
            stop_reason=stop_reason,
            tokens=state.tokens,
            generation_time=time.time() - start_time,
        )

    def _decode(self, token_id: int) -> Optional[str]:
        try:
            return self.tokenizer.decode([token_id]).decode("utf-8")
        except (TokenizerError, UnicodeDecodeError) as e:
            logger.warning("Skipping text for token %d: %s", token_id, e)
            return None

    def _check_stop(self, token_id: int, state: GenerationState) -> Optional[StopReason]:
        if token_id == self.config.eos_token_id:
            return StopReason.EOS
        if self.config.stop_sequence in state.text:
            return StopReason.STOP_SEQUENCE
        if state.num_tokens >= self.config.max_tokens:
            return StopReason.MAX_TOKENS
        return None
