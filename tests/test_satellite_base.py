"""Tests for the shared satellite contract."""

import asyncio

import pytest
from unittest.mock import Mock

from agent_mesh.domain.models.agent_state import SatelliteId, SatelliteStatus, Task
from agent_mesh.domain.models.events import SatelliteEventType
from agent_mesh.domain.orchestration.subagent.inventor import Inventor
from agent_mesh.infrastructure.observability.logging import agent_logger

from tests.fakes import FailingGenerator

CONTENT_PROMPT = "Create high-quality content"


def content_task(text="Describe green tea"):
    return Task(satellite_id=SatelliteId.INVENTOR, description=text, input=text)


@pytest.fixture
def inventor(generator, store):
    generator.reply(CONTENT_PROMPT, "Green tea is unoxidized.")
    return Inventor(generator, store)


class TestExecuteContract:
    """Success, failure and metrics."""

    @pytest.mark.asyncio
    async def test_success_updates_state_and_metrics(self, inventor):
        result = await inventor.execute(content_task())

        assert result.success is True
        assert result.metrics.iteration_count == 1
        assert result.metrics.tokens_used == 15
        assert inventor.state.status == SatelliteStatus.COMPLETED
        assert inventor.state.output == "Green tea is unoxidized."
        assert inventor.state.end_time is not None

    @pytest.mark.asyncio
    async def test_exception_becomes_failed_result(self, store):
        inventor = Inventor(FailingGenerator(), store)

        result = await inventor.execute(content_task())

        assert result.success is False
        assert result.output == ""
        assert result.error == "generator unavailable"
        assert inventor.state.status == SatelliteStatus.ERROR

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_separate_metrics(self, inventor):
        first, second = await asyncio.gather(
            inventor.execute(content_task("Describe green tea")),
            inventor.execute(content_task("Describe black tea")),
        )

        assert first.metrics.iteration_count == 1
        assert second.metrics.iteration_count == 1
        assert inventor.state.iterations == 2
        assert inventor.state.tokens_used == 30

    @pytest.mark.asyncio
    async def test_events_and_failing_subscriber(self, inventor):
        seen = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        inventor.on_event(broken)
        unsubscribe = inventor.on_event(lambda event: seen.append(event.type))

        await inventor.execute(content_task())
        unsubscribe()
        await inventor.execute(content_task())

        assert seen == [SatelliteEventType.STARTED, SatelliteEventType.COMPLETED]

    @pytest.mark.asyncio
    async def test_reset_returns_to_idle(self, inventor):
        await inventor.execute(content_task())

        inventor.reset()

        assert inventor.state.status == SatelliteStatus.IDLE
        assert inventor.state.iterations == 0


class TestStreaming:
    @pytest.mark.asyncio
    async def test_generate_stream_yields_chunks(self, inventor, generator):
        generator.reply("Say", "streamed words")

        chunks = [chunk async for chunk in inventor.generate_stream("Say something")]

        assert "".join(chunks) == "streamed words"
        assert len(chunks) > 1
        assert inventor.state.iterations == 1


class TestEventLogging:
    @pytest.mark.asyncio
    async def test_task_events_log_task_id(self, inventor, monkeypatch):
        log_event = Mock()
        monkeypatch.setattr(agent_logger, "log_satellite_event", log_event)
        task = content_task()

        await inventor.execute(task)

        logged = {call.args[0]: call.kwargs["task_id"] for call in log_event.call_args_list}
        assert logged["started"] == task.id
        assert logged["completed"] == task.id

        await inventor.set_status(SatelliteStatus.THINKING, 0.5)
        assert log_event.call_args.kwargs["task_id"] is None
