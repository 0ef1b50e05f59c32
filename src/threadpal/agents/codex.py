"""Codex backend: structured JSONL stream with explicit session resume."""

from __future__ import annotations

from threadpal.agents.base import (
    AgentAdapter,
    AgentDescriptor,
    InvocationRequest,
    InvocationResult,
    MessageCollector,
    append_optional_arg,
    iter_json_payloads,
    resolve_prompt_value,
    shell_quote,
)

CODEX_CMD = "codex"
BASE_ARGS = "--json --skip-git-repo-check --yolo"
MODEL_ARG = "--model"
REASONING_CONFIG_KEY = "model_reasoning_effort"
THREAD_STARTED_EVENT = "thread.started"
ITEM_COMPLETED_EVENT = "item.completed"


class CodexAgent(AgentAdapter):
    descriptor = AgentDescriptor(id="codex", label="codex")

    def __init__(self, *, cmd: str = CODEX_CMD, base_args: str = BASE_ARGS) -> None:
        self._cmd = cmd
        self._base_args = base_args

    def build_command(self, request: InvocationRequest, *, prompt_expression: str | None = None) -> str:
        prompt_value = resolve_prompt_value(request.prompt, prompt_expression)
        args = append_optional_arg(self._base_args, MODEL_ARG, request.model)
        if request.reasoning_effort:
            config_value = f'{REASONING_CONFIG_KEY}="{request.reasoning_effort}"'
            args = f"{args} --config {shell_quote(config_value)}".strip()
        if request.session_id:
            return f"{self._cmd} exec resume {shell_quote(request.session_id)} {args} {prompt_value}".strip()
        return f"{self._cmd} exec {args} {prompt_value}".strip()

    def parse_output(self, output: str) -> InvocationResult:
        session_id: str | None = None
        collector = MessageCollector()
        saw_structured = False
        for payload in iter_json_payloads(output):
            saw_structured = True
            event_type = payload.get("type")
            if event_type == THREAD_STARTED_EVENT:
                thread_id = payload.get("thread_id")
                if session_id is None and isinstance(thread_id, str) and thread_id:
                    session_id = thread_id
                continue
            item = payload.get("item")
            if event_type == ITEM_COMPLETED_EVENT and isinstance(item, dict):
                if "message" in str(item.get("type") or ""):
                    collector.add_item(item)

        if not saw_structured:
            return InvocationResult(text=(output or "").strip(), raw_output=output or "")
        return InvocationResult(
            text=collector.result(),
            session_id=session_id,
            saw_structured=True,
            raw_output=output or "",
        )
