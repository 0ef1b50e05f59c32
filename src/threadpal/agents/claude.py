"""Claude headless backend."""

from __future__ import annotations

import json
from typing import Any

from threadpal.agents.base import (
    AgentAdapter,
    AgentDescriptor,
    InvocationRequest,
    InvocationResult,
    append_optional_arg,
    first_session_id,
    iter_json_payloads,
    resolve_prompt_value,
    shell_quote,
    strip_ansi,
)

CLAUDE_CMD = "claude"
CLAUDE_OUTPUT_FORMAT = "json"
TEXT_FIELDS = ("result", "text", "output")


class ClaudeAgent(AgentAdapter):
    # Headless mode needs an attached terminal.
    descriptor = AgentDescriptor(id="claude", label="claude", needs_pty=True)

    def build_command(self, request: InvocationRequest, *, prompt_expression: str | None = None) -> str:
        prompt_value = resolve_prompt_value(request.prompt, prompt_expression)
        args = [
            "-p",
            prompt_value,
            "--output-format",
            CLAUDE_OUTPUT_FORMAT,
            "--dangerously-skip-permissions",
        ]
        command = f"{CLAUDE_CMD} {' '.join(args)}"
        command = append_optional_arg(command, "--model", request.model)
        if request.session_id:
            command = f"{command} --resume {shell_quote(request.session_id)}"
        return command.strip()

    def parse_output(self, output: str) -> InvocationResult:
        cleaned = strip_ansi(output).strip()
        if not cleaned:
            return InvocationResult(text="", raw_output=output or "")

        session_id: str | None = None
        last_payload: dict[str, Any] | None = None
        for payload in iter_json_payloads(cleaned):
            if session_id is None:
                session_id = first_session_id(payload)
            last_payload = payload

        if last_payload is None:
            return InvocationResult(text=cleaned, raw_output=output or "")
        return InvocationResult(
            text=_extract_text(last_payload),
            session_id=session_id,
            saw_structured=True,
            raw_output=output or "",
        )


def _extract_text(payload: dict[str, Any]) -> str:
    for name in TEXT_FIELDS:
        value = payload.get(name)
        if isinstance(value, str):
            return value.strip()
    structured = payload.get("structured_output")
    if structured is not None:
        return json.dumps(structured, ensure_ascii=False, indent=2)
    return ""
