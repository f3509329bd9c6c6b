from __future__ import annotations

import copy
import json
from types import SimpleNamespace

import pytest
from openai import AzureOpenAI, OpenAI, OpenAIError

from aimailman.config import LlmConfig
from aimailman.llm import LanguageModelError, OpenAIChatClient, ToolCapability


def _message(content: str | None = None, tool_calls: list | None = None) -> SimpleNamespace:
    return SimpleNamespace(content=content, tool_calls=tool_calls)


def _tool_call(call_id: str, name: str, arguments: object) -> SimpleNamespace:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=raw))


class StubCompletions:
    def __init__(self, replies: list) -> None:
        self._replies = list(replies)
        self.requests: list[dict] = []

    def create(self, **kwargs):
        self.requests.append(copy.deepcopy(kwargs))
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=reply)])


def _client(replies: list, **kwargs) -> tuple[OpenAIChatClient, StubCompletions]:
    completions = StubCompletions(replies)
    stub = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIChatClient(model="gpt-test", client=stub, **kwargs), completions


def _recording_tool(calls: list, result: str = "done") -> ToolCapability:
    def handler(**arguments: str) -> str:
        calls.append(arguments)
        return result

    return ToolCapability(
        name="move_to_folder",
        description="Move the email.",
        parameters={"type": "object", "properties": {}},
        handler=handler,
    )


def test_plain_reply_renders_prompt_and_returns_text() -> None:
    client, completions = _client([_message("  No action needed \n")])

    text = client.invoke(
        "Subject: {{$subject}}",
        {"subject": "Invoice"},
        [_recording_tool([])],
        system_prompt="policy",
    )

    assert text == "No action needed"
    request = completions.requests[0]
    assert request["model"] == "gpt-test"
    assert request["messages"] == [
        {"role": "system", "content": "policy"},
        {"role": "user", "content": "Subject: Invoice"},
    ]
    assert request["tools"][0]["function"]["name"] == "move_to_folder"
    assert request["tool_choice"] == "auto"


def test_tool_calls_are_dispatched_and_answered() -> None:
    calls: list = []
    client, completions = _client(
        [
            _message(tool_calls=[_tool_call("call-1", "move_to_folder", {"messageId": "m1"})]),
            _message("Moved."),
        ]
    )

    text = client.invoke("prompt", {}, [_recording_tool(calls, result="Successfully moved")])

    assert text == "Moved."
    assert calls == [{"messageId": "m1"}]
    follow_up = completions.requests[1]["messages"]
    assert follow_up[-2]["role"] == "assistant"
    assert follow_up[-2]["tool_calls"][0]["id"] == "call-1"
    assert follow_up[-1] == {
        "role": "tool",
        "tool_call_id": "call-1",
        "content": "Successfully moved",
    }


@pytest.mark.parametrize(
    ("name", "arguments"),
    [
        ("delete_everything", {}),
        ("move_to_folder", "{not json"),
        ("move_to_folder", "[1, 2]"),
    ],
)
def test_bad_tool_calls_become_error_results(name: str, arguments: object) -> None:
    calls: list = []
    client, completions = _client(
        [_message(tool_calls=[_tool_call("c", name, arguments)]), _message("ok")]
    )

    client.invoke("prompt", {}, [_recording_tool(calls)])

    assert calls == []
    assert completions.requests[1]["messages"][-1]["content"].startswith("Error:")


def test_handler_exception_is_reported_to_model() -> None:
    def explode(**_arguments: str) -> str:
        raise RuntimeError("kaboom")

    tool = ToolCapability(name="move_to_folder", description="", parameters={}, handler=explode)
    client, completions = _client(
        [_message(tool_calls=[_tool_call("c", "move_to_folder", {})]), _message("gave up")]
    )

    assert client.invoke("prompt", {}, [tool]) == "gave up"
    assert "kaboom" in completions.requests[1]["messages"][-1]["content"]


def test_exhausting_tool_rounds_raises() -> None:
    looping = _message(tool_calls=[_tool_call("c", "move_to_folder", {})])
    client, _ = _client([looping, looping], max_tool_rounds=2)

    with pytest.raises(LanguageModelError):
        client.invoke("prompt", {}, [_recording_tool([])])


def test_transport_errors_are_wrapped() -> None:
    client, _ = _client([OpenAIError("service unavailable")])

    with pytest.raises(LanguageModelError) as excinfo:
        client.invoke("prompt", {}, [])

    assert "service unavailable" in str(excinfo.value)


def test_from_config_selects_backend() -> None:
    azure = OpenAIChatClient.from_config(
        LlmConfig(
            model="gpt-4o-mini",
            api_key="key",
            service="azure",
            endpoint="https://example.openai.azure.com",
        )
    )
    openai_client = OpenAIChatClient.from_config(LlmConfig(model="gpt-4o-mini", api_key="key"))

    assert isinstance(azure._client, AzureOpenAI)
    assert isinstance(openai_client._client, OpenAI)
    assert not isinstance(openai_client._client, AzureOpenAI)
