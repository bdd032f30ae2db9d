"""
Bounded multi-step agent loop.
Runs one agent kind over a transcript and returns schema-validated structured output.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import ValidationError

from channel_analyzer.agents.base_agent import (
    FINAL_TOOL_NAME,
    AgentProcessingError,
    AgentTool,
    ModelStep,
    ReasoningClient,
    extract_json_object,
    truncate_for_log,
)
from channel_analyzer.schemas.analysis import AnalysisOutput
from channel_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

StopCondition = Callable[[List[ModelStep]], bool]

MAX_TRANSCRIPT_CHARS = 120000


class SchemaValidationError(AgentProcessingError):
    """Raised when the terminal model output does not match the agent kind's contract."""

    def __init__(self, message: str, agent_kind: str, raw_output: Optional[str] = None) -> None:
        super().__init__(message)
        self.agent_kind = agent_kind
        self.raw_output = raw_output


def step_count_is(count: int) -> StopCondition:
    """Stop once this many steps have run."""
    def condition(steps: List[ModelStep]) -> bool:
        return len(steps) >= count
    return condition


def has_tool_call(tool_name: str) -> StopCondition:
    """Stop once the latest step invoked the named tool."""
    def condition(steps: List[ModelStep]) -> bool:
        return bool(steps) and steps[-1].called(tool_name) is not None
    return condition


@dataclass
class AgentKind:
    """Named agent configuration: instructions, output contract and step ceiling."""
    name: str
    label: str
    preamble: str
    output_model: Type[AnalysisOutput]
    max_steps: int = 3
    tools: List[AgentTool] = field(default_factory=list)
    extra_stop_conditions: List[StopCondition] = field(default_factory=list)

    @property
    def stop_conditions(self) -> List[StopCondition]:
        return [step_count_is(self.max_steps), has_tool_call(FINAL_TOOL_NAME), *self.extra_stop_conditions]

    def build_prompt(self, transcript_text: str) -> str:
        if len(transcript_text) > MAX_TRANSCRIPT_CHARS:
            transcript_text = transcript_text[:MAX_TRANSCRIPT_CHARS] + "\n[...transcript truncated...]"
        return (
            f"Analyze this fantasy basketball video transcript for the {self.label} report.\n\n"
            f"TRANSCRIPT:\n{transcript_text}\n\n"
            f"When you are done, call the {FINAL_TOOL_NAME} tool with your analysis."
        )


class AgentRunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class AgentResult:
    """Validated output of one agent invocation plus what it took to get there."""
    agent_kind: str
    output: AnalysisOutput
    raw_output: str
    steps: int
    duration_seconds: float


@dataclass
class AgentRun:
    """In-memory state of one invocation; nothing here is persisted."""
    kind: AgentKind
    state: AgentRunState = AgentRunState.IDLE
    step_number: int = 0
    steps: List[ModelStep] = field(default_factory=list)
    messages: List[Dict[str, Any]] = field(default_factory=list)
    candidate: Optional[Dict[str, Any]] = None
    candidate_raw: Optional[str] = None
    error: Optional[str] = None


class AgentOrchestrator:
    """
    Drives a reasoning client through a bounded step loop.

    After every step the stop conditions are checked in order and the first
    one that fires ends the loop. The last structured output the model produced
    is then validated against the kind's output model; invalid output is a
    hard failure, never coerced.
    """

    def __init__(self, client: ReasoningClient) -> None:
        """
        Initialize the orchestrator.

        Args:
            client: Reasoning-model client used for every step
        """
        self.client = client

    def run(self, kind: AgentKind, transcript_text: str) -> AgentResult:
        """
        Run one agent kind over a transcript.

        Args:
            kind: Agent kind configuration
            transcript_text: Transcript to analyze

        Returns:
            AgentResult with validated output

        Raises:
            AgentProcessingError: If the transcript is empty or a step fails
            SchemaValidationError: If the terminal output is missing or invalid
        """
        if not transcript_text or not transcript_text.strip():
            raise AgentProcessingError("Cannot analyze empty transcript")

        run = AgentRun(kind=kind)
        run.messages.append({"role": "user", "content": kind.build_prompt(transcript_text)})
        schema = kind.output_model.model_json_schema()
        start_time = time.time()

        logger.info(f"[{kind.name}] Starting analysis",
                    transcript_length=len(transcript_text),
                    max_steps=kind.max_steps)

        run.state = AgentRunState.RUNNING
        try:
            while True:
                run.step_number += 1
                step = self.client.run(kind.preamble, run.messages, schema, kind.tools)
                run.steps.append(step)
                self._absorb_step(run, step)

                logger.info(f"[{kind.name}] Step {run.step_number} finished",
                            tool_calls=[call.name for call in step.tool_calls],
                            has_candidate=run.candidate is not None)

                if any(condition(run.steps) for condition in kind.stop_conditions):
                    break
                if not step.tool_calls:
                    # Nothing left for the model to act on
                    break

            output = self._validate(run)
        except AgentProcessingError as e:
            run.state = AgentRunState.FAILED
            run.error = str(e)
            logger.error(f"[{kind.name}] Analysis failed", step=run.step_number, error=str(e))
            raise
        except Exception as e:
            run.state = AgentRunState.FAILED
            run.error = str(e)
            logger.error(f"[{kind.name}] Unexpected error during analysis", step=run.step_number, error=str(e))
            raise AgentProcessingError(f"Unexpected error: {e}") from e

        run.state = AgentRunState.COMPLETED
        duration = time.time() - start_time

        logger.info(f"[{kind.name}] Complete",
                    steps=run.step_number,
                    findings=len(output.findings),
                    confidence=output.confidence.value,
                    duration_seconds=round(duration, 2))

        return AgentResult(
            agent_kind=kind.name,
            output=output,
            raw_output=run.candidate_raw or "",
            steps=run.step_number,
            duration_seconds=duration,
        )

    def _absorb_step(self, run: AgentRun, step: ModelStep) -> None:
        """Record the step's output candidate and answer its tool calls in the history."""
        final_call = step.called(FINAL_TOOL_NAME)
        if final_call is not None:
            run.candidate = final_call.input
            run.candidate_raw = json.dumps(final_call.input)
        else:
            parsed = extract_json_object(step.text)
            if parsed is not None:
                run.candidate = parsed
                run.candidate_raw = step.text

        if not step.tool_calls:
            return

        run.messages.append({"role": "assistant", "content": step.assistant_content})

        tools = {tool.name: tool for tool in run.kind.tools}
        results = []
        for call in step.tool_calls:
            if call.name == FINAL_TOOL_NAME:
                content = "Analysis received."
            elif call.name in tools:
                content = self._invoke_tool(run.kind, tools[call.name], call.input)
            else:
                content = f"Unknown tool: {call.name}"
            results.append({"type": "tool_result", "tool_use_id": call.id, "content": content})

        run.messages.append({"role": "user", "content": results})

    @staticmethod
    def _invoke_tool(kind: AgentKind, tool: AgentTool, tool_input: Dict[str, Any]) -> str:
        try:
            result = tool.handler(tool_input)
        except Exception as e:
            logger.warning(f"[{kind.name}] Tool failed", tool=tool.name, error=str(e))
            return f"Tool error: {e}"
        return result if isinstance(result, str) else json.dumps(result, default=str)

    @staticmethod
    def _validate(run: AgentRun) -> AnalysisOutput:
        """Validate the last well-formed candidate against the kind's contract."""
        kind = run.kind
        if run.candidate is None:
            raise SchemaValidationError(
                f"{kind.label} agent produced no structured output in {run.step_number} steps",
                agent_kind=kind.name,
                raw_output=run.steps[-1].text if run.steps else None,
            )

        try:
            return kind.output_model.model_validate(run.candidate)
        except ValidationError as e:
            fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in e.errors())
            logger.warning(f"[{kind.name}] Output failed validation",
                           fields=fields,
                           raw_output=truncate_for_log(run.candidate_raw or ""))
            raise SchemaValidationError(
                f"{kind.label} agent output failed validation ({fields})",
                agent_kind=kind.name,
                raw_output=run.candidate_raw,
            ) from e
