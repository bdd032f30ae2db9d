"""
Tests for the bounded agent orchestration loop.
"""

import json
from typing import List
from unittest.mock import Mock

import anthropic
import httpx
import pytest

from channel_analyzer.agents.base_agent import (
    FINAL_TOOL_NAME,
    AgentProcessingError,
    AgentTool,
    AnthropicReasoningClient,
    ModelStep,
    ToolCall,
    extract_json_object,
    truncate_for_log,
)
from channel_analyzer.agents.kinds import AGENT_KINDS, SHARED_CONTEXT, get_agent_kind
from channel_analyzer.agents.orchestrator import (
    AgentKind,
    AgentOrchestrator,
    SchemaValidationError,
    has_tool_call,
    step_count_is,
)
from channel_analyzer.schemas.analysis import MustRosterOutput, UrgencyLevel
from tests.factories import final_step, make_finding, make_output


def scripted_client(steps: List[ModelStep]) -> Mock:
    client = Mock()
    client.run.side_effect = steps
    return client


def lookup_step(call_id: str = "toolu_lookup") -> ModelStep:
    call = ToolCall(id=call_id, name="lookup_player", input={"name": "Ryan Rollins"})
    return ModelStep(
        tool_calls=[call],
        assistant_content=[{"type": "tool_use", "id": call_id, "name": "lookup_player", "input": call.input}],
    )


@pytest.fixture
def must_roster() -> AgentKind:
    return get_agent_kind("must_roster")


@pytest.fixture
def kind_with_tool() -> AgentKind:
    tool = AgentTool(
        name="lookup_player",
        description="Look up a player",
        input_schema={"type": "object", "properties": {"name": {"type": "string"}}},
        handler=lambda tool_input: {"team": "Milwaukee"},
    )
    return AgentKind(name="test_kind", label="Test", preamble="Test preamble",
                     output_model=MustRosterOutput, max_steps=3, tools=[tool])


class TestStopConditions:
    """Stop condition helpers."""

    def test_step_count_is(self) -> None:
        condition = step_count_is(2)

        assert condition([ModelStep()]) is False
        assert condition([ModelStep(), ModelStep()]) is True

    def test_has_tool_call_looks_at_latest_step(self) -> None:
        condition = has_tool_call(FINAL_TOOL_NAME)

        assert condition([]) is False
        assert condition([final_step(make_output())]) is True
        assert condition([final_step(make_output()), ModelStep(text="more")]) is False


class TestAgentOrchestrator:
    """Test the AgentOrchestrator loop."""

    def test_single_step_valid_output(self, must_roster: AgentKind, sample_transcript_text: str) -> None:
        payload = make_output([make_finding("Ryan Rollins", roster_percentage=30)])
        client = scripted_client([final_step(payload)])

        result = AgentOrchestrator(client).run(must_roster, sample_transcript_text)

        assert result.steps == 1
        assert result.agent_kind == "must_roster"
        assert isinstance(result.output, MustRosterOutput)
        assert result.output.findings[0].subject_name == "Ryan Rollins"
        assert result.output.findings[0].urgency == UrgencyLevel.HIGH
        assert json.loads(result.raw_output) == payload

        preamble, messages, schema, tools = client.run.call_args[0]
        assert preamble.startswith(SHARED_CONTEXT)
        assert sample_transcript_text in messages[0]["content"]
        assert "confidence" in schema["required"]

    def test_tool_results_are_fed_back(self, kind_with_tool: AgentKind, sample_transcript_text: str) -> None:
        history_lengths = []
        steps = iter([lookup_step(), final_step(make_output())])

        def run(preamble, messages, schema, tools):
            history_lengths.append(len(messages))
            return next(steps)

        client = Mock()
        client.run.side_effect = run

        result = AgentOrchestrator(client).run(kind_with_tool, sample_transcript_text)

        assert result.steps == 2
        assert history_lengths == [1, 3]
        tool_results = client.run.call_args[0][1][2]["content"]
        assert tool_results[0]["tool_use_id"] == "toolu_lookup"
        assert json.loads(tool_results[0]["content"]) == {"team": "Milwaukee"}

    def test_step_ceiling_is_enforced(self, kind_with_tool: AgentKind, sample_transcript_text: str) -> None:
        client = scripted_client([lookup_step(f"toolu_{n}") for n in range(10)])

        with pytest.raises(SchemaValidationError, match="no structured output in 3 steps"):
            AgentOrchestrator(client).run(kind_with_tool, sample_transcript_text)

        assert client.run.call_count == 3

    def test_missing_required_field_fails_validation(self, must_roster: AgentKind,
                                                     sample_transcript_text: str) -> None:
        payload = {"findings": [], "summary": "Nothing to add."}
        client = scripted_client([final_step(payload)])

        with pytest.raises(SchemaValidationError, match="confidence") as exc_info:
            AgentOrchestrator(client).run(must_roster, sample_transcript_text)

        assert exc_info.value.agent_kind == "must_roster"

    def test_invalid_urgency_fails_validation(self, must_roster: AgentKind, sample_transcript_text: str) -> None:
        payload = make_output([make_finding("Ryan Rollins", urgency="URGENT")])
        client = scripted_client([final_step(payload)])

        with pytest.raises(SchemaValidationError):
            AgentOrchestrator(client).run(must_roster, sample_transcript_text)

    def test_unknown_field_fails_validation(self, must_roster: AgentKind, sample_transcript_text: str) -> None:
        payload = {**make_output(), "players": []}
        client = scripted_client([final_step(payload)])

        with pytest.raises(SchemaValidationError):
            AgentOrchestrator(client).run(must_roster, sample_transcript_text)

    def test_text_json_fallback(self, must_roster: AgentKind, sample_transcript_text: str) -> None:
        text = "```json\n" + json.dumps(make_output(confidence="LOW")) + "\n```"
        client = scripted_client([ModelStep(text=text, stop_reason="end_turn")])

        result = AgentOrchestrator(client).run(must_roster, sample_transcript_text)

        assert result.output.confidence.value == "LOW"
        assert result.raw_output == text

    def test_plain_text_without_output_fails(self, must_roster: AgentKind, sample_transcript_text: str) -> None:
        client = scripted_client([ModelStep(text="I could not find anything.", stop_reason="end_turn")])

        with pytest.raises(SchemaValidationError, match="no structured output"):
            AgentOrchestrator(client).run(must_roster, sample_transcript_text)

        assert client.run.call_count == 1

    def test_empty_transcript_rejected(self, must_roster: AgentKind) -> None:
        client = scripted_client([])

        with pytest.raises(AgentProcessingError, match="empty transcript"):
            AgentOrchestrator(client).run(must_roster, "   \n ")

        client.run.assert_not_called()

    def test_client_failure_propagates(self, must_roster: AgentKind, sample_transcript_text: str) -> None:
        client = Mock()
        client.run.side_effect = AgentProcessingError("Claude API error: overloaded")

        with pytest.raises(AgentProcessingError, match="overloaded"):
            AgentOrchestrator(client).run(must_roster, sample_transcript_text)

    def test_unexpected_client_error_is_wrapped(self, must_roster: AgentKind, sample_transcript_text: str) -> None:
        client = Mock()
        client.run.side_effect = RuntimeError("boom")

        with pytest.raises(AgentProcessingError, match="Unexpected error: boom"):
            AgentOrchestrator(client).run(must_roster, sample_transcript_text)

    def test_empty_findings_is_valid(self, must_roster: AgentKind, sample_transcript_text: str) -> None:
        client = scripted_client([final_step(make_output([], confidence="MEDIUM"))])

        result = AgentOrchestrator(client).run(must_roster, sample_transcript_text)

        assert result.output.findings == []
        assert result.output.high_urgency_findings() == []


class TestAgentKinds:
    """Registered agent kinds."""

    def test_all_kinds_registered(self) -> None:
        assert set(AGENT_KINDS) == {"must_roster", "watch_list", "drop", "injury_return", "sell_high", "buy_low"}

    def test_kinds_share_context_and_ceiling(self) -> None:
        for kind in AGENT_KINDS.values():
            assert kind.preamble.startswith(SHARED_CONTEXT)
            assert kind.max_steps == 3
            assert len(kind.stop_conditions) == 2

    def test_unknown_kind(self) -> None:
        with pytest.raises(KeyError, match="Unknown agent kind"):
            get_agent_kind("hot_take")


class TestAnthropicReasoningClient:
    """Test the Claude-backed reasoning client."""

    def _response(self, blocks) -> Mock:
        response = Mock()
        response.content = blocks
        response.stop_reason = "tool_use"
        response.usage.input_tokens = 100
        response.usage.output_tokens = 50
        return response

    def _tool_block(self, payload) -> Mock:
        block = Mock()
        block.type = "tool_use"
        block.id = "toolu_1"
        block.name = FINAL_TOOL_NAME
        block.input = payload
        return block

    def test_run_offers_final_tool(self) -> None:
        sdk = Mock()
        sdk.messages.create.return_value = self._response([self._tool_block(make_output())])
        client = AnthropicReasoningClient(api_key="test-key", client=sdk)

        step = client.run("preamble", [{"role": "user", "content": "hi"}], {"type": "object"})

        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["system"] == "preamble"
        assert kwargs["tools"][-1]["name"] == FINAL_TOOL_NAME
        assert kwargs["tools"][-1]["input_schema"] == {"type": "object"}
        assert step.called(FINAL_TOOL_NAME).input == make_output()
        assert step.input_tokens == 100

    def test_rate_limit_is_retried(self) -> None:
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        rate_limited = anthropic.RateLimitError(
            "rate limited", response=httpx.Response(429, request=request), body=None
        )
        sdk = Mock()
        sdk.messages.create.side_effect = [rate_limited, self._response([self._tool_block(make_output())])]
        sleeps: List[float] = []
        client = AnthropicReasoningClient(api_key="test-key", client=sdk, sleep=sleeps.append)

        client.run("preamble", [], {"type": "object"})

        assert sleeps == [20]
        assert sdk.messages.create.call_count == 2

    def test_empty_response_raises(self) -> None:
        sdk = Mock()
        sdk.messages.create.return_value = self._response([])
        client = AnthropicReasoningClient(api_key="test-key", client=sdk)

        with pytest.raises(AgentProcessingError, match="Empty response"):
            client.run("preamble", [], {"type": "object"})

    def test_requires_api_key(self) -> None:
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            AnthropicReasoningClient(api_key="")


def test_extract_json_object() -> None:
    assert extract_json_object('Here you go: {"a": 1} thanks') == {"a": 1}
    assert extract_json_object("```json\n{\"a\": 2}\n```") == {"a": 2}
    assert extract_json_object("no json here") is None
    assert extract_json_object("{broken") is None
    assert extract_json_object("") is None


def test_truncate_for_log() -> None:
    assert truncate_for_log("short") == "short"
    assert truncate_for_log("x" * 500) == "x" * 200 + "..."
    assert truncate_for_log("abcdef", max_length=3) == "abc..."
