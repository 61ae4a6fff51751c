"""Tests for backend plumbing that does not need network access."""

import json
from types import SimpleNamespace

import httpx
import pytest

from toolgate.chat.backends import (
    AnthropicBackend,
    BackendConfigError,
    BackendError,
    GeminiBackend,
    OllamaBackend,
    OpenAIBackend,
    ToolCallAssembler,
    available_backends,
    load_backend,
)
from toolgate.config import settings
from toolgate.core.schema import (
    FunctionResponse,
    Part,
    ToolCallRequest,
    ToolDeclaration,
)


def _tool_result(call_id: str, status: str) -> Part:
    return Part(
        function_response=FunctionResponse(
            call_id=call_id, name="write_file", response={"status": status}
        )
    )


def test_registered_backends() -> None:
    """All four providers are available by name."""
    assert available_backends() == ["anthropic", "gemini", "ollama", "openai"]


def test_unknown_backend() -> None:
    """An unknown name is a configuration error."""
    with pytest.raises(BackendConfigError, match="not registered"):
        load_backend("nope")


@pytest.mark.parametrize(
    "name, key_setting",
    [
        ("gemini", "GEMINI_API_KEY"),
        ("anthropic", "ANTHROPIC_API_KEY"),
        ("openai", "OPENAI_API_KEY"),
    ],
)
def test_missing_credentials(monkeypatch, name: str, key_setting: str) -> None:
    """Hosted backends refuse to start without an API key."""
    monkeypatch.setattr(settings, key_setting, None)

    with pytest.raises(BackendConfigError, match=key_setting):
        load_backend(name)


def test_call_id_generated_when_missing() -> None:
    """Requests without an id get name + timestamp."""
    request = ToolCallRequest(call_id=None, name="read_file", args=None)

    assert request.call_id.startswith("read_file-")
    assert request.args == {}


def test_request_args_are_copied() -> None:
    """Changing the source payload after issuing a request does not change the request."""
    payload = {"file_path": "a.txt", "options": {"append": False}}
    request = ToolCallRequest(name="write_file", args=payload)

    payload["file_path"] = "b.txt"
    payload["options"]["append"] = True

    assert request.args == {"file_path": "a.txt", "options": {"append": False}}


def test_tool_call_assembler_joins_deltas() -> None:
    """Argument fragments are concatenated per index; index order is kept."""
    assembler = ToolCallAssembler()
    assembler.add(1, call_id="call_b", name="list_directory", arguments="{}")
    assembler.add(0, call_id="call_a", name="write_file", arguments='{"file_path": "a.')
    assembler.add(0, arguments='txt", "content": "hi"}')

    requests = assembler.requests()

    assert [r.call_id for r in requests] == ["call_a", "call_b"]
    assert requests[0].args == {"file_path": "a.txt", "content": "hi"}


def test_tool_call_assembler_malformed_arguments() -> None:
    """Broken JSON yields empty arguments, left for validation to reject."""
    assembler = ToolCallAssembler()
    assembler.add(0, call_id="c", name="write_file", arguments='{"file_path": ')

    assert assembler.requests()[0].args == {}


def test_openai_messages_for_tool_results() -> None:
    """Tool results become 'tool' messages keyed by call id."""
    messages = OpenAIBackend._to_messages([_tool_result("c1", "success")])

    assert messages == [
        {"role": "tool", "tool_call_id": "c1", "content": json.dumps({"status": "success"})}
    ]


def test_anthropic_blocks_flag_non_success() -> None:
    """Cancelled and failed calls are sent as error tool results."""
    blocks = AnthropicBackend._to_blocks(
        [_tool_result("ok", "success"), _tool_result("no", "cancelled"), Part(text="hi")]
    )

    assert [b["type"] for b in blocks] == ["tool_result", "tool_result", "text"]
    assert [b.get("is_error") for b in blocks[:2]] == [False, True]


def _ollama(handler) -> OllamaBackend:
    backend = OllamaBackend(model="test-model", endpoint="http://ollama.test")
    backend._http = httpx.Client(
        base_url="http://ollama.test", transport=httpx.MockTransport(handler)
    )
    return backend


def test_ollama_stream_fragments_and_history() -> None:
    """NDJSON lines map to thought, content and tool-call fragments."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["payload"] = json.loads(request.content)
        lines = [
            {"message": {"role": "assistant", "thinking": "checking"}, "done": False},
            {"message": {"role": "assistant", "content": "Let me look."}, "done": False},
            {
                "message": {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [{"function": {"name": "list_directory", "arguments": {}}}],
                },
                "done": True,
            },
        ]
        return httpx.Response(200, text="\n".join(json.dumps(line) for line in lines))

    backend = _ollama(handler)
    declarations = [ToolDeclaration(name="list_directory", description="ls", parameters={})]

    fragments = list(backend.send_turn([Part(text="what's here?")], declarations))

    assert [(f.text, f.is_thought) for f in fragments[:2]] == [
        ("checking", True),
        ("Let me look.", False),
    ]
    assert fragments[2].tool_call.name == "list_directory"
    assert seen["payload"]["tools"][0]["function"]["name"] == "list_directory"
    assert seen["payload"]["messages"][-1] == {"role": "user", "content": "what's here?"}
    assert backend.history[-1]["role"] == "assistant"
    assert backend.history[-1]["tool_calls"][0]["function"]["name"] == "list_directory"


def test_ollama_http_error_rolls_back_history() -> None:
    """A failed request raises BackendError and leaves the history untouched."""
    backend = _ollama(lambda request: httpx.Response(500, text="down"))
    before = list(backend.history)

    with pytest.raises(BackendError):
        list(backend.send_turn([Part(text="hi")]))

    assert backend.history == before


def test_ollama_send_message_usage() -> None:
    """Non-streaming replies report token counts."""
    backend = _ollama(
        lambda request: httpx.Response(
            200,
            json={"message": {"content": "hello"}, "prompt_eval_count": 7, "eval_count": 3},
        )
    )

    reply = backend.send_message("hi")

    assert reply.text == "hello"
    assert (reply.usage.input_tokens, reply.usage.output_tokens) == (7, 3)
    assert reply.model == "test-model"


def test_gemini_transport_error_rolls_back_history() -> None:
    """Connection failures below the SDK surface as BackendError, history untouched."""

    def refuse(**_kwargs):
        raise httpx.ConnectError("connection refused")

    backend = GeminiBackend(model="gemini-test", api_key="test-key")
    backend._client = SimpleNamespace(
        models=SimpleNamespace(generate_content_stream=refuse, generate_content=refuse)
    )

    with pytest.raises(BackendError, match="connection refused"):
        list(backend.send_turn([Part(text="hi")]))
    with pytest.raises(BackendError, match="connection refused"):
        backend.send_message("hi")

    assert backend.history == []
