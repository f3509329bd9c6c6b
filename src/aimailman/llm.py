"""Language model client with automatic tool-call dispatch."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from openai import AzureOpenAI, OpenAI, OpenAIError

from .config import LlmConfig
from .prompts import render_variables
from .types import ERROR_PREFIX

LOGGER = logging.getLogger(__name__)


class LanguageModelError(RuntimeError):
    """Raised when the language model cannot produce a final answer."""


@dataclass(frozen=True)
class ToolCapability:
    """A function the model may call while producing its answer."""

    name: str
    description: str
    parameters: Mapping[str, Any]
    handler: Callable[..., str]

    def schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.parameters),
            },
        }


class LanguageModelClient(Protocol):
    """Runs a prompt, letting the model invoke the supplied tools."""

    def invoke(
        self,
        prompt: str,
        variables: Mapping[str, str],
        tools: Sequence[ToolCapability],
        *,
        system_prompt: str | None = None,
    ) -> str:
        """Return the model's final text after all tool calls completed."""


class OpenAIChatClient:
    """Chat-completions client for OpenAI and Azure OpenAI deployments."""

    def __init__(
        self,
        *,
        model: str,
        client: Any,
        max_tool_rounds: int = 5,
        temperature: float | None = None,
    ) -> None:
        if max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be at least 1")
        self._model = model
        self._client = client
        self._max_tool_rounds = max_tool_rounds
        self._temperature = temperature

    @classmethod
    def from_config(cls, config: LlmConfig) -> OpenAIChatClient:
        if config.service == "azure":
            client: Any = AzureOpenAI(
                api_key=config.api_key,
                azure_endpoint=config.endpoint,
                api_version=config.api_version,
                timeout=config.timeout_seconds,
            )
        else:
            client = OpenAI(
                api_key=config.api_key,
                organization=config.organization,
                base_url=config.endpoint,
                timeout=config.timeout_seconds,
            )
        LOGGER.info(
            "Language model client ready (service=%s, model=%s)", config.service, config.model
        )
        return cls(
            model=config.model,
            client=client,
            max_tool_rounds=config.max_tool_rounds,
            temperature=config.temperature,
        )

    def invoke(
        self,
        prompt: str,
        variables: Mapping[str, str],
        tools: Sequence[ToolCapability],
        *,
        system_prompt: str | None = None,
    ) -> str:
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        rendered = render_variables(prompt, variables)
        LOGGER.debug("Final prompt sent to model:\n%s", rendered)
        messages.append({"role": "user", "content": rendered})
        registry = {tool.name: tool for tool in tools}

        for round_number in range(1, self._max_tool_rounds + 1):
            message = self._complete(messages, tools)
            tool_calls = list(getattr(message, "tool_calls", None) or [])
            if not tool_calls:
                return (message.content or "").strip()

            LOGGER.debug(
                "Model requested %s tool call(s) in round %s", len(tool_calls), round_number
            )
            messages.append(
                {
                    "role": "assistant",
                    "content": message.content,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.function.name,
                                "arguments": call.function.arguments,
                            },
                        }
                        for call in tool_calls
                    ],
                }
            )
            for call in tool_calls:
                result = self._dispatch(registry, call.function.name, call.function.arguments)
                messages.append({"role": "tool", "tool_call_id": call.id, "content": result})

        raise LanguageModelError(
            f"Model did not produce a final answer within {self._max_tool_rounds} tool round(s)."
        )

    def _complete(self, messages: list[dict[str, Any]], tools: Sequence[ToolCapability]) -> Any:
        request: dict[str, Any] = {"model": self._model, "messages": messages}
        if tools:
            request["tools"] = [tool.schema() for tool in tools]
            request["tool_choice"] = "auto"
        if self._temperature is not None:
            request["temperature"] = self._temperature
        try:
            response = self._client.chat.completions.create(**request)
        except OpenAIError as exc:
            raise LanguageModelError(f"Chat completion failed: {exc}") from exc
        if not response.choices:
            raise LanguageModelError("Chat completion returned no choices.")
        return response.choices[0].message

    def _dispatch(self, registry: Mapping[str, ToolCapability], name: str, arguments: str) -> str:
        tool = registry.get(name)
        if tool is None:
            LOGGER.warning("Model called unknown tool '%s'", name)
            return f"{ERROR_PREFIX} unknown function '{name}'."
        try:
            parsed = json.loads(arguments or "{}")
        except json.JSONDecodeError as exc:
            LOGGER.warning("Model sent malformed arguments for '%s': %s", name, exc)
            return f"{ERROR_PREFIX} arguments for '{name}' are not valid JSON."
        if not isinstance(parsed, dict):
            return f"{ERROR_PREFIX} arguments for '{name}' must be a JSON object."
        try:
            return tool.handler(**parsed)
        except TypeError as exc:
            LOGGER.warning("Model called '%s' with unexpected arguments: %s", name, exc)
            return f"{ERROR_PREFIX} invalid arguments for '{name}': {exc}"
        except Exception as exc:
            LOGGER.exception("Tool '%s' failed", name)
            return f"{ERROR_PREFIX} {name} failed: {exc}"


__all__ = [
    "LanguageModelClient",
    "LanguageModelError",
    "OpenAIChatClient",
    "ToolCapability",
]
