"""Tests for the mesh request pipeline."""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock

from agent_mesh.domain.models.agent_state import Critique, CritiqueTarget, SatelliteId
from agent_mesh.domain.models.errors import MeshBusyError, MeshError, PlanningError
from agent_mesh.domain.models.events import MeshEventType
from agent_mesh.domain.orchestration.core.main_agent import AgentMesh, build_mesh
from agent_mesh.domain.orchestration.subagent.planner import Planner
from agent_mesh.domain.orchestration.subagent.resource_manager import NO_EVICTION_MESSAGE, ResourceManager
from agent_mesh.infrastructure.config.settings import ExecutorSettings, SchedulerSettings, Settings

from tests.fakes import OverlapTrackingGenerator

PLAN_PROMPT = "Break the following request into tasks."
CONTENT_PROMPT = "Create high-quality content"
SYNTHESIS_PROMPT = "The user asked:"

NOT_COMPLETED = "I was not able to complete any part of this request."


def plan_json(*tasks):
    return json.dumps({"analysis": "two steps", "tasks": list(tasks)})


@pytest.fixture
def two_step_plan(generator):
    generator.reply(PLAN_PROMPT, plan_json(
        {"description": "Describe tea history", "satellite": "edison"},
        {"description": "Summarize the history", "satellite": "edison", "dependencies": ["Describe tea history"]},
    ))
    generator.reply(CONTENT_PROMPT, "Tea content")
    generator.reply(SYNTHESIS_PROMPT, "Final answer")


def recorded(mesh):
    events = []
    mesh.on_event(events.append)
    return events


class TestProcessRequest:
    """Planning, batched dispatch and synthesis."""

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("two_step_plan")
    async def test_happy_path(self, mesh, generator):
        response = await mesh.process_request("Tell me about tea")

        assert response == "Final answer"
        content_prompts = generator.prompts_starting_with(CONTENT_PROMPT)
        assert len(content_prompts) == 2
        assert "[EDISON]: Tea content" in content_prompts[1]
        assert mesh.get_context_summary()["current_turns"] == 2
        assert mesh.is_processing is False

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("two_step_plan")
    async def test_event_order(self, mesh):
        events = recorded(mesh)

        await mesh.process_request("Tell me about tea")

        types = [e.type for e in events if e.type != MeshEventType.MESSAGE]
        assert types == [
            MeshEventType.PLAN_CREATED,
            MeshEventType.TASK_STARTED,
            MeshEventType.TASK_COMPLETED,
            MeshEventType.TASK_STARTED,
            MeshEventType.TASK_COMPLETED,
            MeshEventType.ALL_COMPLETE,
        ]
        final = events[-1]
        assert final.data["response"] == "Final answer"
        assert len(final.data["results"]) == 2
        assert len({e.request_id for e in events}) == 1

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("two_step_plan")
    async def test_satellite_events_are_forwarded(self, mesh):
        events = recorded(mesh)

        await mesh.process_request("Tell me about tea")

        forwarded = [(e.data["satellite"], e.data["type"]) for e in events if e.type == MeshEventType.MESSAGE]
        assert forwarded.count(("edison", "completed")) == 2
        assert ("shaka", "started") in forwarded

    @pytest.mark.asyncio
    async def test_failed_dependency_stops_execution(self, mesh, generator):
        generator.reply(PLAN_PROMPT, plan_json(
            {"description": "Run the numbers", "satellite": "atlas"},
            {"description": "Describe the numbers", "satellite": "edison", "dependencies": ["Run the numbers"]},
        ))

        response = await mesh.process_request("Crunch some numbers")

        assert response.startswith(NOT_COMPLETED)
        assert "Quality Note: 1 of 2 tasks failed." in response
        assert (
            "Quality Note: Execution stopped early; 1 tasks could not run "
            "because their dependencies did not complete." in response
        )
        assert generator.prompts_starting_with(CONTENT_PROMPT) == []

    @pytest.mark.asyncio
    async def test_fallback_plan_still_answers(self, mesh, generator):
        generator.reply(PLAN_PROMPT, "no json here")
        generator.reply(CONTENT_PROMPT, "Tea content")
        generator.reply(SYNTHESIS_PROMPT, "Final answer")

        assert await mesh.process_request("Tell me about tea") == "Final answer"

    @pytest.mark.asyncio
    async def test_rejected_review_adds_note(self, generator, embedder):
        mesh = build_mesh(generator, embedder, settings=Settings(
            executor=ExecutorSettings(backoff_base=0.0, backoff_max=0.0),
            scheduler=SchedulerSettings(review_output=True),
        ))
        generator.reply(PLAN_PROMPT, plan_json({"description": "Describe tea history", "satellite": "edison"}))
        generator.reply(CONTENT_PROMPT, "Tea content")
        generator.reply(SYNTHESIS_PROMPT, "Final answer")
        mesh.critic.critique = AsyncMock(return_value=Critique(
            target_id="run",
            target_type=CritiqueTarget.OUTPUT,
            score=40,
            recommendation="Significant issues found.",
            approved=False,
        ))

        response = await mesh.process_request("Tell me about tea")

        assert response == "Final answer\n\nQuality Note: Some issues were detected (score: 40/100)"
        assert mesh.critic.critique.await_args.args[0] == "Tea content"

    @pytest.mark.asyncio
    async def test_review_failure_is_skipped(self, generator, embedder):
        mesh = build_mesh(generator, embedder, settings=Settings(scheduler=SchedulerSettings(review_output=True)))
        generator.reply(PLAN_PROMPT, plan_json({"description": "Describe tea history", "satellite": "edison"}))
        generator.reply(SYNTHESIS_PROMPT, "Final answer")
        mesh.critic.critique = AsyncMock(side_effect=RuntimeError("critic down"))

        assert await mesh.process_request("Tell me about tea") == "Final answer"

    @pytest.mark.asyncio
    async def test_independent_tasks_run_concurrently(self, embedder, settings):
        generator = OverlapTrackingGenerator({
            PLAN_PROMPT: plan_json(
                {"description": "Describe green tea", "satellite": "edison"},
                {"description": "Describe black tea", "satellite": "edison"},
            ),
            CONTENT_PROMPT: "Tea content",
            SYNTHESIS_PROMPT: "Final answer",
        })
        mesh = build_mesh(generator, embedder, settings=settings)

        assert await mesh.process_request("Compare teas") == "Final answer"
        assert len(generator.prompts_starting_with(CONTENT_PROMPT)) == 2
        assert generator.peak == 2

    @pytest.mark.asyncio
    async def test_deep_linear_plan_runs_to_completion(self, mesh, generator):
        depth = 250
        tasks = [{"description": "Describe tea fact 0", "satellite": "edison"}]
        tasks += [
            {"description": f"Describe tea fact {i}", "satellite": "edison", "dependencies": [f"Describe tea fact {i - 1}"]}
            for i in range(1, depth)
        ]
        generator.reply(PLAN_PROMPT, plan_json(*tasks))
        generator.reply(CONTENT_PROMPT, "Tea content")
        generator.reply(SYNTHESIS_PROMPT, "Final answer")
        events = recorded(mesh)

        response = await mesh.process_request("Tell me everything about tea")

        assert response == "Final answer"
        assert len(generator.prompts_starting_with(CONTENT_PROMPT)) == depth
        assert len(events[-1].data["results"]) == depth
        assert events[-1].type == MeshEventType.ALL_COMPLETE


class TestBusyAndErrors:
    @pytest.mark.asyncio
    async def test_second_request_is_rejected_while_busy(self, mesh):
        started = asyncio.Event()
        gate = asyncio.Event()

        async def slow_plan(task):
            started.set()
            await gate.wait()
            raise PlanningError("Planning failed: cancelled")

        mesh.planner.plan = slow_plan
        first = asyncio.create_task(mesh.process_request("first"))
        await started.wait()

        assert mesh.is_processing is True
        with pytest.raises(MeshBusyError):
            await mesh.process_request("second")

        gate.set()
        with pytest.raises(PlanningError):
            await first
        assert mesh.is_processing is False

    @pytest.mark.asyncio
    async def test_planning_failure_emits_error(self, mesh):
        events = recorded(mesh)
        mesh.planner.plan = AsyncMock(side_effect=PlanningError("Planning failed: boom"))

        with pytest.raises(PlanningError):
            await mesh.process_request("anything")

        errors = [e for e in events if e.type == MeshEventType.ERROR]
        assert errors[0].data == {"error": "Planning failed: boom"}
        assert mesh.active_plan is None


class TestMeshApi:
    """Direct operations outside the request pipeline."""

    @pytest.mark.asyncio
    async def test_send_to_satellite(self, mesh, generator):
        generator.reply(CONTENT_PROMPT, "A poem about tea")

        result = await mesh.send_to_satellite(SatelliteId.INVENTOR, "A poem about tea")

        assert result.success is True
        assert result.output == "A poem about tea"

    @pytest.mark.asyncio
    async def test_send_to_missing_satellite(self, generator, store):
        planner = Planner(generator, store)
        manager = ResourceManager(generator, store)
        mesh = AgentMesh(store, {planner.id: planner, manager.id: manager})

        with pytest.raises(MeshError, match="Unknown satellite"):
            await mesh.send_to_satellite(SatelliteId.CRITIC, "review")

    def test_planner_and_resource_manager_are_required(self, generator, store):
        planner = Planner(generator, store)

        with pytest.raises(ValueError, match="york"):
            AgentMesh(store, {planner.id: planner})

    @pytest.mark.asyncio
    async def test_documents_and_search(self, mesh):
        document = await mesh.add_document("Oolong is partially oxidized", {"title": "Oolong"})

        results = await mesh.search("Oolong is partially oxidized")

        assert document.metadata.source == "user"
        assert results[0].document.id == document.id
        assert (await mesh.get_data_stats())["documents"] == 1

    @pytest.mark.asyncio
    async def test_trigger_eviction_with_short_history(self, mesh):
        assert await mesh.trigger_eviction() == NO_EVICTION_MESSAGE

    def test_state_snapshot(self, mesh):
        state = mesh.get_state()

        assert set(state["satellites"]) == {"shaka", "lilith", "edison", "pythagoras", "atlas", "york"}
        assert state["active_plan"] is None
        assert state["connection_state"] == "idle"
        assert state["processing"] is False
        assert state["resources"]["active_agents"] == 6
        assert state["roster"]["york"]["status"] == "idle"
