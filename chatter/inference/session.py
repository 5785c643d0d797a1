"""
Prompt queue and published result for a chat conversation slot.

Prompts are queued in arrival order and handed to the generation loop one at
a time. The session exposes a single current result that each successful run
overwrites; failed runs leave it untouched and are recorded as the last error.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from .errors import PreconditionError
from .generator import GenerationConfig, GenerationLoop, GenerationResult, RunFailed, RunOutcome
from .sampling import SamplingConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptSubmitted:
    """A prompt submitted by the user."""

    text: str


class ChatSession:
    """
    Serializes prompts through a generation loop.

    Prompts can be processed synchronously with ``process_next`` and
    ``process_pending``, or by a background worker started with ``start``.
    Either way at most one run is in flight.
    """

    def __init__(
        self,
        loop: GenerationLoop,
        on_result: Optional[Callable[[PromptSubmitted, RunOutcome], None]] = None,
    ):
        if loop is None:
            raise PreconditionError("generation loop")

        self.loop = loop
        self.on_result = on_result

        self._queue: "queue.Queue[PromptSubmitted]" = queue.Queue()
        self._process_lock = threading.Lock()
        self._slot_lock = threading.Lock()
        self._current_result: Optional[str] = None
        self._last_error: Optional[RunFailed] = None

        self._worker: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @classmethod
    def from_collaborators(
        cls,
        model: Any,
        tokenizer: Any,
        sampling_config: Optional[SamplingConfig] = None,
        config: Optional[GenerationConfig] = None,
        **kwargs,
    ) -> "ChatSession":
        """Build a session and its generation loop from a model and tokenizer."""
        return cls(GenerationLoop(model, tokenizer, sampling_config, config), **kwargs)

    @property
    def current_result(self) -> Optional[str]:
        with self._slot_lock:
            return self._current_result

    @property
    def last_error(self) -> Optional[RunFailed]:
        with self._slot_lock:
            return self._last_error

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, text: str) -> PromptSubmitted:
        """Queue a prompt for generation."""
        event = PromptSubmitted(text)
        self._queue.put(event)
        logger.debug("Queued prompt (%d pending)", self._queue.qsize())
        return event

    def process_next(
        self,
        block: bool = False,
        timeout: Optional[float] = None,
        on_token: Optional[Callable[[int, str], None]] = None,
    ) -> Optional[RunOutcome]:
        """
        Run the oldest queued prompt.

        Args:
            block: Wait for a prompt if the queue is empty
            timeout: Maximum time to wait when blocking
            on_token: Passed through to the generation loop for streaming

        Returns:
            The run outcome, or None if no prompt was available
        """
        # Dequeue and run under one lock; results publish in arrival order
        with self._process_lock:
            try:
                event = self._queue.get(block=block, timeout=timeout)
            except queue.Empty:
                return None

            try:
                outcome = self.loop.run(event.text, on_token=on_token)
                self._publish(event, outcome)
            finally:
                self._queue.task_done()

        return outcome

    def process_pending(self) -> List[RunOutcome]:
        """Run every queued prompt in arrival order."""
        outcomes = []
        while True:
            outcome = self.process_next()
            if outcome is None:
                break
            outcomes.append(outcome)
        return outcomes

    def start(self):
        """Process prompts on a background thread."""
        if self._worker is not None and self._worker.is_alive():
            if not self._stop_event.is_set():
                return
            # A previous worker is still finishing its run
            self._worker.join()
        self._stop_event.clear()
        self._worker = threading.Thread(target=self._work, name="chatter-session", daemon=True)
        self._worker.start()

    def stop(self, cancel: bool = False, timeout: Optional[float] = None):
        """
        Stop the background worker.

        Args:
            cancel: Also cancel the run in flight instead of letting it finish
            timeout: Maximum time to wait for the worker to exit
        """
        self._stop_event.set()
        if cancel:
            self.loop.cancel()
        if self._worker is None:
            return

        self._worker.join(timeout)
        if self._worker.is_alive():
            logger.warning("Session worker still busy after %s seconds", timeout)
            return

        self._worker = None
        if cancel:
            self.loop.clear_cancel()

    def join(self):
        """Block until every queued prompt has been processed."""
        self._queue.join()

    def _work(self):
        while not self._stop_event.is_set():
            try:
                self.process_next(block=True, timeout=0.1)
            except Exception as e:
                logger.exception("Prompt processing failed")
                with self._slot_lock:
                    self._last_error = RunFailed(str(e), e)

    def _publish(self, event: PromptSubmitted, outcome: RunOutcome):
        with self._slot_lock:
            if isinstance(outcome, GenerationResult):
                self._current_result = outcome.text
            else:
                self._last_error = outcome

        if self.on_result is not None:
            self.on_result(event, outcome)
