"""OpenCode backend."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from threadpal.agents.base import (
    AgentAdapter,
    AgentDescriptor,
    InvocationRequest,
    InvocationResult,
    iter_json_payloads,
    resolve_prompt_value,
    safe_json_loads,
    shell_quote,
)

OPENCODE_CMD = "opencode"
OPENCODE_PERMISSION = '{"*": "allow"}'
OPENCODE_OUTPUT_FORMAT = "json"
DEFAULT_MODEL = "opencode/gpt-5-nano"
SESSION_CREATED_FIELDS = ("created", "createdAt", "created_at", "time")


def _with_permission_env(command: str) -> str:
    return f"OPENCODE_PERMISSION={shell_quote(OPENCODE_PERMISSION)} {command} < /dev/null"


class OpenCodeAgent(AgentAdapter):
    descriptor = AgentDescriptor(id="opencode", label="opencode", default_model=DEFAULT_MODEL)

    def build_command(self, request: InvocationRequest, *, prompt_expression: str | None = None) -> str:
        prompt_value = resolve_prompt_value(request.prompt, prompt_expression)
        args = ["run", "--format", OPENCODE_OUTPUT_FORMAT]
        args.extend(["--model", shell_quote(request.model or DEFAULT_MODEL)])
        if request.session_id:
            args.append("--continue")
            args.extend(["--session", shell_quote(request.session_id)])
        # Prompt is the trailing positional argument.
        args.append(prompt_value)
        return _with_permission_env(f"{OPENCODE_CMD} {' '.join(args)}")

    def parse_output(self, output: str) -> InvocationResult:
        session_id: str | None = None
        text_parts: list[str] = []
        saw_structured = False
        for payload in iter_json_payloads(output):
            saw_structured = True
            if session_id is None and isinstance(payload.get("sessionID"), str) and payload["sessionID"]:
                session_id = payload["sessionID"]
            part = payload.get("part")
            if payload.get("type") == "text" and isinstance(part, dict) and part.get("text"):
                text_parts.append(str(part["text"]))

        if not saw_structured:
            return InvocationResult(text=(output or "").strip(), raw_output=output or "")
        return InvocationResult(
            text="".join(text_parts).strip(),
            session_id=session_id,
            saw_structured=True,
            raw_output=output or "",
        )

    def list_models_command(self) -> str:
        return _with_permission_env(f"{OPENCODE_CMD} models")

    @staticmethod
    def parse_model_list(output: str) -> str:
        models: list[str] = []
        for line in (output or "").splitlines():
            trimmed = line.strip()
            if not trimmed or trimmed.startswith("INFO"):
                continue
            models.append(trimmed)
        return "\n".join(models)

    def list_sessions_command(self) -> str:
        return _with_permission_env(f"{OPENCODE_CMD} session list --format json")

    @staticmethod
    def parse_session_list(output: str) -> str | None:
        """Return the id of the most recently created session in a listing."""
        entries: list[dict[str, Any]] = []
        whole = safe_json_loads((output or "").strip())
        if isinstance(whole, list):
            entries = [entry for entry in whole if isinstance(entry, dict)]
        else:
            entries = list(iter_json_payloads(output))

        best_id: str | None = None
        best_created: float | None = None
        for entry in entries:
            session_id = entry.get("id") or entry.get("sessionID")
            if not isinstance(session_id, str) or not session_id:
                continue
            created = _created_timestamp(entry)
            if best_id is None or (created is not None and (best_created is None or created > best_created)):
                best_id = session_id
                best_created = created
        return best_id


def _created_timestamp(entry: dict[str, Any]) -> float | None:
    for name in SESSION_CREATED_FIELDS:
        value = entry.get(name)
        if isinstance(value, dict):
            value = value.get("created")
        if isinstance(value, bool):
            continue
        if isinstance(value, int | float):
            return float(value)
        if isinstance(value, str) and value:
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
            except ValueError:
                continue
    return None
