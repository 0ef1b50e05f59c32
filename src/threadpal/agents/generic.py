"""Config-driven backend for CLIs that mostly print free-form text."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

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
from threadpal.errors import ConstructionError

PLACEHOLDERS = ("{prompt}", "{session}", "{model}", "{thinking}")
TEXT_FIELDS = ("response", "result", "text", "output")
MISSING_COMMAND_ERROR = "Agent config for '{agent}' is missing both cmd and template."


class GenericAgentConfig(BaseModel):
    """Command definition for a generic backend."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    label: str | None = None
    cmd: str = ""
    args: str = ""
    template: str = ""
    model_arg: str | None = Field(default=None, alias="modelArg")
    thinking_arg: str | None = Field(default=None, alias="thinkingArg")
    resume_arg: str | None = Field(default=None, alias="resumeArg")
    needs_pty: bool = False
    merge_stderr: bool = False
    default_model: str | None = None


class GenericAgent(AgentAdapter):
    def __init__(self, agent_id: str, config: GenericAgentConfig) -> None:
        if not config.cmd.strip() and not config.template.strip():
            raise ConstructionError(MISSING_COMMAND_ERROR.format(agent=agent_id))
        self._config = config
        self.descriptor = AgentDescriptor(
            id=agent_id,
            label=config.label or agent_id,
            needs_pty=config.needs_pty,
            merge_stderr=config.merge_stderr,
            default_model=config.default_model,
        )

    @property
    def config(self) -> GenericAgentConfig:
        return self._config

    def build_command(self, request: InvocationRequest, *, prompt_expression: str | None = None) -> str:
        prompt_value = resolve_prompt_value(request.prompt, prompt_expression)
        model = request.model or self._config.default_model
        if self._config.template.strip():
            return self._build_from_template(request, prompt_value, model)

        command = f"{self._config.cmd} {self._config.args}".strip()
        if request.session_id:
            command = append_optional_arg(command, self._config.resume_arg, request.session_id)
        command = append_optional_arg(command, self._config.model_arg, model)
        command = append_optional_arg(command, self._config.thinking_arg, request.reasoning_effort)
        return f"{command} {prompt_value}".strip()

    def _build_from_template(self, request: InvocationRequest, prompt_value: str, model: str | None) -> str:
        template = self._config.template
        has_prompt = "{prompt}" in template
        values = {
            "{prompt}": prompt_value,
            "{session}": shell_quote(request.session_id) if request.session_id else "",
            "{model}": shell_quote(model) if model else "",
            "{thinking}": shell_quote(request.reasoning_effort) if request.reasoning_effort else "",
        }
        command = template
        for placeholder in PLACEHOLDERS:
            command = command.replace(placeholder, values[placeholder])
        command = command.strip()

        if not has_prompt:
            command = f"{command} {prompt_value}".strip()
        if "{model}" not in template:
            command = append_optional_arg(command, self._config.model_arg, model)
        if "{thinking}" not in template:
            command = append_optional_arg(command, self._config.thinking_arg, request.reasoning_effort)
        return command.strip()

    def parse_output(self, output: str) -> InvocationResult:
        cleaned = strip_ansi(output).strip()
        session_id: str | None = None
        texts: list[str] = []
        saw_structured = False
        for payload in iter_json_payloads(cleaned):
            saw_structured = True
            if session_id is None:
                session_id = first_session_id(payload)
            if text := _extract_text(payload):
                texts.append(text)

        if not saw_structured:
            return InvocationResult(text=cleaned, raw_output=output or "")
        return InvocationResult(
            text=texts[-1] if texts else cleaned,
            session_id=session_id,
            saw_structured=True,
            raw_output=output or "",
        )


def _extract_text(payload: dict[str, Any]) -> str:
    for name in TEXT_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


GEMINI_CONFIG = GenericAgentConfig(
    label="gemini",
    cmd="gemini",
    args="--output-format json --yolo",
    model_arg="--model",
    resume_arg="--resume",
    template="",
)
