"""Tests for the event emitter and structured output parsing."""

import pytest

from agent_mesh.domain.models.parse_result import ParseErr, ParseOk, extract_json_array, extract_json_object
from agent_mesh.domain.streaming.event_emitter import EventEmitter


class TestEventEmitter:
    """Delivery, unsubscribe and failing subscribers."""

    @pytest.mark.asyncio
    async def test_sync_and_async_subscribers(self):
        emitter = EventEmitter("test")
        seen = []

        async def record_async(event):
            seen.append(("async", event))

        emitter.subscribe(lambda event: seen.append(("sync", event)))
        emitter.subscribe(record_async)

        await emitter.emit("ping")

        assert seen == [("sync", "ping"), ("async", "ping")]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_stop_delivery(self):
        emitter = EventEmitter("test")
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        emitter.subscribe(broken)
        emitter.subscribe(seen.append)

        await emitter.emit("ping")

        assert seen == ["ping"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        emitter = EventEmitter("test")
        seen = []
        unsubscribe = emitter.subscribe(seen.append)

        unsubscribe()
        unsubscribe()
        await emitter.emit("ping")

        assert seen == []
        assert len(emitter) == 0


class TestJsonExtraction:
    def test_object_inside_prose(self):
        result = extract_json_object('Sure! ```json\n{"a": {"b": 1}}\n``` hope that helps')

        assert isinstance(result, ParseOk)
        assert result.value == {"a": {"b": 1}}

    @pytest.mark.parametrize("text,reason", [
        ("no braces at all", "no JSON object found"),
        ("{not json}", "malformed JSON"),
        ("", "no JSON object found"),
        (None, "no JSON object found"),
    ])
    def test_object_errors(self, text, reason):
        result = extract_json_object(text)

        assert isinstance(result, ParseErr)
        assert result.ok is False
        assert result.reason.startswith(reason)

    def test_array(self):
        assert extract_json_array('Results: ["a", "b"]').value == ["a", "b"]

    def test_array_errors(self):
        assert extract_json_array("nothing").reason == "no JSON array found"
        assert extract_json_array("[1, 2,]").reason.startswith("malformed JSON")
