"""Command-line assistant kinds: argv conventions and output parsing."""

import json
import logging
from typing import Protocol

from agent_engine.db.models import AgentResponse

logger = logging.getLogger(__name__)


class CliTool(Protocol):
    """Interface every supported assistant implements."""

    name: str
    program: str
    marker_dir: str

    def argv(self, session_id: str, message: str) -> list[str]:
        """Arguments after the program name for one non-interactive turn."""

    def parse_result(self, stdout: str, duration_ms: int) -> AgentResponse:
        """Turn captured stdout into a response envelope."""


def _plain_response(stdout: str, duration_ms: int) -> AgentResponse:
    return AgentResponse(
        type="result",
        subtype="success",
        duration_ms=duration_ms,
        duration_api_ms=duration_ms,
        is_error=False,
        result=stdout,
    )


class ClaudeCode:
    name = "claude-code"
    program = "claude"
    marker_dir = ".claude"

    def argv(self, session_id: str, message: str) -> list[str]:
        args = ["--dangerously-skip-permissions"]
        if session_id:
            args += ["--resume", session_id]
        args += ["--output-format", "json", "-p", message]
        return args

    def parse_result(self, stdout: str, duration_ms: int) -> AgentResponse:
        response = _plain_response(stdout, duration_ms)
        data = _load_envelope(stdout)
        if data is None:
            logger.warning("Could not parse %s output as JSON, keeping plain text", self.program)
            return response

        response.type = data.get("type") or response.type
        response.subtype = data.get("subtype") or response.subtype
        response.duration_ms = int(data.get("duration_ms") or duration_ms)
        response.duration_api_ms = int(data.get("duration_api_ms") or duration_ms)
        response.is_error = bool(data.get("is_error", False))
        result = data.get("result")
        if result is None:
            response.result = ""
        else:
            response.result = result if isinstance(result, str) else json.dumps(result)
        response.session_id = data.get("session_id") or ""
        response.usage = data.get("usage")
        return response


class QwenCode:
    name = "qwen-code"
    program = "qwen"
    marker_dir = ".qwen"

    def argv(self, session_id: str, message: str) -> list[str]:
        return ["-y", "-p", message]

    def parse_result(self, stdout: str, duration_ms: int) -> AgentResponse:
        return _plain_response(stdout, duration_ms)


class Gemini:
    name = "gemini"
    program = "gemini"
    marker_dir = ".gemini"

    def argv(self, session_id: str, message: str) -> list[str]:
        return ["-y", "-p", message]

    def parse_result(self, stdout: str, duration_ms: int) -> AgentResponse:
        return _plain_response(stdout, duration_ms)


# Detection order follows insertion order.
CLI_TOOLS: dict[str, CliTool] = {
    tool.name: tool for tool in (ClaudeCode(), QwenCode(), Gemini())
}

DEFAULT_CLI_TOOL = ClaudeCode.name

_ALIASES = {
    "claude": ClaudeCode.name,
    "k1": ClaudeCode.name,
    "qwen": QwenCode.name,
    "k2": QwenCode.name,
    "k3": Gemini.name,
}


def normalize_tool_name(name: str) -> str:
    key = name.strip().lower()
    return _ALIASES.get(key, key)


def get_cli_tool(name: str | None) -> CliTool:
    """Look up a tool by name or alias. Raises ValueError if unknown."""
    if not name:
        return CLI_TOOLS[DEFAULT_CLI_TOOL]
    key = normalize_tool_name(name)
    if key not in CLI_TOOLS:
        raise ValueError(
            f"Unsupported CLI tool: {name!r}. Supported: {', '.join(CLI_TOOLS)}"
        )
    return CLI_TOOLS[key]


def _load_envelope(stdout: str) -> dict | None:
    text = stdout.strip()
    candidates = [text]
    # Some versions print warnings before the JSON document.
    lines = [line for line in text.splitlines() if line.strip()]
    if lines and lines[-1].lstrip().startswith("{"):
        candidates.append(lines[-1])
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(data, dict):
            return data
    return None
