"""
Unit tests for the chatter chat session.
"""

import threading

import pytest
from unittest.mock import Mock

from chatter.inference.errors import ModelError, PreconditionError
from chatter.inference.generator import GenerationConfig, GenerationLoop, GenerationResult, RunFailed
from chatter.inference.sampling import SamplingConfig
from chatter.inference.session import ChatSession, PromptSubmitted

from tests.stubs import ScriptedModel, TableTokenizer


class TestChatSession:
    """Test prompt queueing and result publishing."""

    def setup_method(self):
        """Set up a session over stub collaborators."""
        self.model = ScriptedModel([1, 3, 2, 2])
        self.tokenizer = TableTokenizer()
        self.results = []
        self.session = ChatSession.from_collaborators(
            self.model,
            self.tokenizer,
            SamplingConfig(),
            GenerationConfig(seed=0),
            on_result=lambda event, outcome: self.results.append((event, outcome)),
        )

    def test_missing_loop(self):
        """Test that a session needs a generation loop."""
        with pytest.raises(PreconditionError):
            ChatSession(None)

    def test_missing_collaborator(self):
        """Test that building a session without a model fails up front."""
        with pytest.raises(PreconditionError):
            ChatSession.from_collaborators(None, self.tokenizer)

    def test_initial_slots(self):
        assert self.session.current_result is None
        assert self.session.last_error is None
        assert self.session.pending == 0

    def test_submit_queues_prompt(self):
        """Test that submitting only queues the prompt."""
        event = self.session.submit("Hi")

        assert event == PromptSubmitted("Hi")
        assert self.session.pending == 1
        assert self.model.forward_calls == []

    def test_process_next_empty_queue(self):
        assert self.session.process_next() is None

    def test_process_next_publishes_result(self):
        """Test that a finished run overwrites the current result."""
        self.session.submit("Hi")
        outcome = self.session.process_next()

        assert isinstance(outcome, GenerationResult)
        assert outcome.text == "Hello world\n\n"
        assert self.session.current_result == "Hello world\n\n"
        assert self.session.pending == 0

    def test_prompts_processed_in_arrival_order(self):
        """Test that queued prompts run one at a time in FIFO order."""
        for prompt in ["first", "second", "third"]:
            self.session.submit(prompt)

        outcomes = self.session.process_pending()

        assert len(outcomes) == 3
        assert self.tokenizer.encoded == [
            b"User: first\n\nAssistant:",
            b"User: second\n\nAssistant:",
            b"User: third\n\nAssistant:",
        ]
        assert [event.text for event, _ in self.results] == ["first", "second", "third"]
        assert self.model.states_created == 3

    def test_current_result_is_single_slot(self):
        """Test that only the latest result is published."""
        self.session.submit("first")
        self.session.process_next()

        self.model.script = [3, 2, 2]
        self.session.submit("second")
        self.session.process_next()

        assert self.session.current_result == " world\n\n"

    def test_failure_keeps_previous_result(self):
        """Test that a failed run leaves the published result untouched."""
        self.session.submit("first")
        self.session.process_next()

        self.model.forward = Mock(side_effect=ModelError("device lost"))
        self.session.submit("second")
        outcome = self.session.process_next()

        assert isinstance(outcome, RunFailed)
        assert self.session.current_result == "Hello world\n\n"
        assert self.session.last_error is outcome
        assert "device lost" in self.session.last_error.reason

    def test_on_result_sees_failures(self):
        """Test that failures are reported to the result callback."""
        self.tokenizer.prompt_tokens = []
        self.session.submit("Hi")
        self.session.process_next()

        event, outcome = self.results[0]
        assert event.text == "Hi"
        assert isinstance(outcome, RunFailed)

    def test_streaming_tokens(self):
        """Test that on_token is forwarded to the generation loop."""
        pieces = []
        self.session.submit("Hi")
        self.session.process_next(on_token=lambda token_id, piece: pieces.append(piece))

        assert "".join(pieces) == "Hello world\n\n"

    def test_background_worker(self):
        """Test processing prompts on the worker thread."""
        self.session.start()
        try:
            self.session.submit("first")
            self.session.submit("second")
            self.session.join()
        finally:
            self.session.stop(timeout=5.0)

        assert [event.text for event, _ in self.results] == ["first", "second"]
        assert self.session.current_result == "Hello world\n\n"
        assert self.session.pending == 0

    def test_shared_loop(self):
        """Test wrapping an existing generation loop."""
        loop = GenerationLoop(self.model, self.tokenizer, config=GenerationConfig(max_tokens=1, seed=0))
        session = ChatSession(loop)

        session.submit("Hi")
        session.process_pending()

        assert session.current_result == "Hello"
        assert session.loop is loop

    def test_worker_survives_unexpected_error(self):
        """Test that a crash outside the model contract does not stop the worker."""
        scripted_forward = self.model.forward
        crashed = []

        def forward(step_input, state):
            if not crashed:
                crashed.append(True)
                raise RuntimeError("driver reset")
            return scripted_forward(step_input, state)

        self.model.forward = forward

        self.session.start()
        try:
            self.session.submit("first")
            self.session.submit("second")
            self.session.join()
        finally:
            self.session.stop(timeout=5.0)

        assert [event.text for event, _ in self.results] == ["second"]
        assert self.session.current_result == "Hello world\n\n"
        assert self.session.last_error.reason == "driver reset"
        assert isinstance(self.session.last_error.error, RuntimeError)

    def test_worker_survives_callback_error(self):
        """Test that a failing result callback does not stop the worker."""
        seen = []

        def on_result(event, outcome):
            seen.append(event.text)
            if event.text == "first":
                raise ValueError("display closed")

        self.session.on_result = on_result
        self.session.start()
        try:
            self.session.submit("first")
            self.session.submit("second")
            self.session.join()
        finally:
            self.session.stop(timeout=5.0)

        assert seen == ["first", "second"]
        assert self.session.current_result == "Hello world\n\n"
        assert isinstance(self.session.last_error.error, ValueError)

    def test_concurrent_processors_keep_arrival_order(self):
        """Test that several threads draining the queue publish in FIFO order."""
        prompts = [f"prompt {i}" for i in range(20)]
        for prompt in prompts:
            self.session.submit(prompt)

        threads = [threading.Thread(target=self.session.process_pending) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10.0)

        assert [event.text for event, _ in self.results] == prompts
        assert self.tokenizer.encoded == [f"User: {p}\n\nAssistant:".encode("utf-8") for p in prompts]
        assert self.session.pending == 0

    def test_stop_cancels_run_in_flight(self):
        """Test that stop(cancel=True) abandons the current run."""
        entered = threading.Event()
        release = threading.Event()
        scripted_forward = self.model.forward

        def forward(step_input, state):
            entered.set()
            release.wait(5.0)
            return scripted_forward(step_input, state)

        self.model.forward = forward

        self.session.start()
        self.session.submit("Hi")
        assert entered.wait(5.0)

        timer = threading.Timer(0.05, release.set)
        timer.start()
        self.session.stop(cancel=True, timeout=5.0)
        timer.join()

        assert self.session.current_result is None
        assert self.session.last_error.reason == "cancelled"

        # The cancel request does not leak into later runs
        self.session.submit("again")
        outcome = self.session.process_next()
        assert isinstance(outcome, GenerationResult)
        assert self.session.current_result == "Hello world\n\n"

    def test_stop_cancel_while_idle(self):
        """Test that cancelling an idle worker leaves later runs untouched."""
        self.session.start()
        self.session.stop(cancel=True, timeout=5.0)

        self.session.submit("Hi")
        outcome = self.session.process_next()

        assert isinstance(outcome, GenerationResult)

    def test_restart_after_stop(self):
        """Test that a stopped worker can be started again."""
        self.session.start()
        self.session.stop(timeout=5.0)
        self.session.start()
        try:
            self.session.submit("Hi")
            self.session.join()
        finally:
            self.session.stop(timeout=5.0)

        assert self.session.current_result == "Hello world\n\n"
