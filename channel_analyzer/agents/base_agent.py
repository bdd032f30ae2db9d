"""
Reasoning-model client used by the agent orchestrator.
Provides one Claude call per orchestrator step, with rate-limit retries and error handling.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

import anthropic
from anthropic import Anthropic

from channel_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

FINAL_TOOL_NAME = "submit_analysis"


class AgentProcessingError(Exception):
    """Raised when a reasoning step cannot be completed."""
    pass


@dataclass
class ToolCall:
    """One tool invocation requested by the model."""
    id: str
    name: str
    input: Dict[str, Any]


@dataclass
class ModelStep:
    """Everything the orchestrator needs from one model call."""
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    assistant_content: List[Dict[str, Any]] = field(default_factory=list)
    stop_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0

    def called(self, tool_name: str) -> Optional[ToolCall]:
        """Return the first call of the named tool in this step, if any."""
        for call in self.tool_calls:
            if call.name == tool_name:
                return call
        return None


@dataclass
class AgentTool:
    """A tool an agent kind exposes to the model, backed by a Python callable."""
    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: Callable[[Dict[str, Any]], Any]

    def definition(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


class ReasoningClient(Protocol):
    """Runs one reasoning step: preamble + conversation so far + output schema."""

    def run(self, preamble: str, messages: List[Dict[str, Any]], schema: Dict[str, Any],
            tools: Optional[List[AgentTool]] = None) -> ModelStep:
        ...


class AnthropicReasoningClient:
    """
    Claude-backed reasoning client.

    The output schema is offered to the model as a terminal tool; calling that
    tool is how the model hands back its structured answer.
    """

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-20250514", max_tokens: int = 4000,
                 temperature: float = 0.1, max_retries: int = 3, client: Optional[Anthropic] = None,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        """Initialize the client with Claude API credentials."""
        if not api_key and client is None:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        self.client: Anthropic = client or Anthropic(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_retries = max_retries
        self._sleep = sleep

    def run(self, preamble: str, messages: List[Dict[str, Any]], schema: Dict[str, Any],
            tools: Optional[List[AgentTool]] = None) -> ModelStep:
        """
        Make one call to Claude with error handling and logging.

        Args:
            preamble: System prompt for the agent kind
            messages: Conversation history (user / assistant / tool results)
            schema: JSON schema of the structured output
            tools: Additional tools the model may call before answering

        Returns:
            Parsed model step

        Raises:
            AgentProcessingError: If the API call fails
        """
        tool_definitions = [tool.definition() for tool in tools or []]
        tool_definitions.append({
            "name": FINAL_TOOL_NAME,
            "description": "Submit the final structured analysis. Call exactly once when the analysis is complete.",
            "input_schema": schema,
        })

        start_time = time.time()
        retry_count = 0

        while True:
            try:
                logger.info("Sending prompt to Claude",
                            messages=len(messages),
                            tools=len(tool_definitions))

                response = self.client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    system=preamble,
                    messages=messages,
                    tools=tool_definitions,
                )
                break

            except anthropic.RateLimitError as e:
                retry_count += 1
                if retry_count > self.max_retries:
                    logger.error(f"Rate limit exceeded after {self.max_retries} retries", error=str(e))
                    raise AgentProcessingError(f"Rate limit exceeded: {e}")
                # Exponential backoff: wait 2^retry_count * 10 seconds
                wait_time = (2 ** retry_count) * 10
                logger.warning(f"Rate limit hit, waiting {wait_time}s (attempt {retry_count}/{self.max_retries})")
                self._sleep(wait_time)

            except anthropic.APIError as e:
                logger.error("Claude API error",
                             error=str(e),
                             duration_seconds=round(time.time() - start_time, 2))
                raise AgentProcessingError(f"Claude API error: {e}")

        step = self._parse_response(response)

        logger.info("Claude response received",
                    duration_seconds=round(time.time() - start_time, 2),
                    stop_reason=step.stop_reason,
                    tool_calls=[call.name for call in step.tool_calls],
                    input_tokens=step.input_tokens,
                    output_tokens=step.output_tokens)
        return step

    @staticmethod
    def _parse_response(response: Any) -> ModelStep:
        """Split a Messages API response into text, tool calls, and replayable content."""
        if not response.content:
            raise AgentProcessingError("Empty response from Claude API")

        step = ModelStep(stop_reason=getattr(response, "stop_reason", None))
        texts = []

        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
                step.assistant_content.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                step.tool_calls.append(ToolCall(id=block.id, name=block.name, input=dict(block.input or {})))
                step.assistant_content.append({
                    "type": "tool_use",
                    "id": block.id,
                    "name": block.name,
                    "input": block.input,
                })

        step.text = "\n".join(texts)

        usage = getattr(response, "usage", None)
        if usage is not None:
            step.input_tokens = getattr(usage, "input_tokens", 0) or 0
            step.output_tokens = getattr(usage, "output_tokens", 0) or 0
        return step


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Find a JSON object in free-form model text (optionally fenced).

    Returns:
        The parsed object, or None when the text holds no JSON object
    """
    if not text:
        return None

    candidate = text.strip()
    if candidate.startswith("```"):
        candidate = candidate.strip("`")
        if candidate.lower().startswith("json"):
            candidate = candidate[4:]

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        return None

    try:
        parsed = json.loads(candidate[start:end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def truncate_for_log(text: str, max_length: int = 200) -> str:
    """Truncate text for logging to avoid overly long log messages."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."
