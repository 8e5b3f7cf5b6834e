import asyncio
import logging
import pytest

from core.exceptions import GenerationException
from explainer.streaming import StreamCallbacks, StreamController, StreamState
from conftest import FakeGenerationStream


class Recorder:
    """Collects callback invocations in order."""

    def __init__(self):
        self.events: list[tuple[str, object]] = []

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_progress=lambda partial: self.events.append(("progress", partial)),
            on_complete=lambda result: self.events.append(("complete", result)),
            on_error=lambda exc: self.events.append(("error", exc)),
        )

    @property
    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.events]


class TestStreamController:
    """
    Unit tests for the streaming controller.
    """

    @pytest.mark.asyncio
    async def test_partials_then_single_completion(self, logger):
        recorder = Recorder()
        stream = FakeGenerationStream([{"a": 1}, {"a": 1, "b": 2}], result="final")

        controller = StreamController(stream, recorder.callbacks(), logger).start()
        assert await controller.wait() is StreamState.COMPLETED

        assert recorder.events == [
            ("progress", {"a": 1}),
            ("progress", {"a": 1, "b": 2}),
            ("complete", "final"),
        ]
        assert stream.result_calls == 1
        assert stream.closed

    @pytest.mark.asyncio
    async def test_persist_runs_before_completion(self, logger):
        recorder = Recorder()

        async def persist(result):
            recorder.events.append(("persist", result))
            return True

        controller = StreamController(
            FakeGenerationStream([], result="final"), recorder.callbacks(), logger, persist=persist
        ).start()
        await controller.wait()

        assert recorder.kinds == ["persist", "complete"]

    @pytest.mark.asyncio
    async def test_persist_failure_still_completes(self, logger, caplog):
        recorder = Recorder()

        async def persist(result):
            return False

        controller = StreamController(
            FakeGenerationStream([{"a": 1}], result="final"), recorder.callbacks(), logger, persist=persist
        ).start()

        with caplog.at_level(logging.ERROR, logger=logger.name):
            await controller.wait()

        assert recorder.kinds == ["progress", "complete"]
        assert any(record.levelno == logging.ERROR for record in caplog.records)

    @pytest.mark.asyncio
    async def test_generation_error_is_terminal(self, logger):
        recorder = Recorder()
        persisted = []

        async def persist(result):
            persisted.append(result)
            return True

        error = GenerationException()
        controller = StreamController(
            FakeGenerationStream([{"a": 1}], error=error), recorder.callbacks(), logger, persist=persist
        ).start()

        assert await controller.wait() is StreamState.ERRORED
        assert recorder.events == [("progress", {"a": 1}), ("error", error)]
        assert persisted == []

    @pytest.mark.asyncio
    async def test_cancel_suppresses_later_callbacks(self, logger):
        recorder = Recorder()
        gate = asyncio.Event()
        stream = FakeGenerationStream([{"a": 1}, {"a": 2}], result="final", gate=gate)

        controller = StreamController(stream, recorder.callbacks(), logger).start()
        gate.set()
        while not recorder.events:
            await asyncio.sleep(0)

        controller.cancel()
        controller.cancel()
        gate.set()

        assert await controller.wait() is StreamState.CANCELLED
        assert recorder.events == [("progress", {"a": 1})]
        assert stream.result_calls == 0
        assert stream.closed

    @pytest.mark.asyncio
    async def test_cancel_before_first_partial(self, logger):
        recorder = Recorder()
        stream = FakeGenerationStream([{"a": 1}], result="final", gate=asyncio.Event())

        controller = StreamController(stream, recorder.callbacks(), logger).start()
        controller.cancel()

        assert await controller.wait() is StreamState.CANCELLED
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(self, logger):
        recorder = Recorder()
        controller = StreamController(FakeGenerationStream([], result="final"), recorder.callbacks(), logger)
        controller.start()
        await controller.wait()

        controller.cancel()

        assert controller.state is StreamState.COMPLETED
        assert recorder.kinds == ["complete"]

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, logger):
        controller = StreamController(FakeGenerationStream([], result="final"), Recorder().callbacks(), logger)
        controller.start()
        with pytest.raises(RuntimeError):
            controller.start()
        await controller.wait()
