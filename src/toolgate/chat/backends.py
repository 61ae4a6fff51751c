"""
Chat backends for toolgate.

This module is the only place that *directly* calls an LLM.  Everything else (turn loop, scheduler,
tools) stays model-agnostic and only sees :class:`ResponseFragment` streams.

We support four back-ends out of the box:

1. **Gemini** via the ``google-genai`` SDK (thoughts are streamed when the model produces them).
2. **Anthropic** via its SDK, with extended thinking.
3. **OpenAI** chat completions, with incremental tool-call deltas.
4. **Ollama** for self-hosted models, over plain HTTP with ``httpx``.

Additional providers can be added by subclassing :class:`BaseChatBackend` and registering via
:func:`register_backend`.  A backend instance is one chat session: it owns the conversation
history and appends the assistant reply once a streamed turn has been fully consumed.
"""

import json
import logging
import uuid
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    Iterator,
    List,
    Sequence,
    Set,
    Type,
)

import httpx

from toolgate.config import settings
from toolgate.core.schema import (
    ChatReply,
    Part,
    ResponseFragment,
    TokenUsage,
    ToolCallRequest,
    ToolDeclaration,
)

logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Raised when the chat backend fails; aborts the current turn."""


class BackendConfigError(BackendError):
    """Raised when a backend cannot be created, e.g. because credentials are missing."""


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_BACKEND_REGISTRY: dict[str, Type["BaseChatBackend"]] = {}


def register_backend(name: str) -> Callable:
    """Decorator to register a backend class under *name*."""

    def wrapper(cls: Type["BaseChatBackend"]) -> Type["BaseChatBackend"]:
        _BACKEND_REGISTRY[name] = cls
        return cls

    return wrapper


def available_backends() -> List[str]:
    """Names accepted by :func:`load_backend`."""
    return sorted(_BACKEND_REGISTRY)


def load_backend(name: str | None = None, model: str | None = None) -> "BaseChatBackend":
    """
    Factory that returns an instantiated backend.

    Fallback order:
    1. *name* arg
    2. ``settings.BACKEND`` env option
    3. default: ``"gemini"``
    """
    target = name or getattr(settings, "BACKEND", "gemini")
    cls = _BACKEND_REGISTRY.get(target.lower())
    if cls is None:
        raise BackendConfigError(
            f"Backend '{target}' is not registered. Options: {', '.join(available_backends())}"
        )
    return cls(model=model)


def _joined_text(parts: Sequence[Part]) -> str:
    return "".join(part.text for part in parts if part.text and not part.thought)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseChatBackend(ABC):
    """Abstract chat session: turn input parts -> streamed fragments."""

    DEFAULT_MODEL: ClassVar[str] = ""

    # Common system prompt for all backends
    SYSTEM_PROMPT: ClassVar[
        str
    ] = """\
You are a helpful assistant running in a terminal codelab.
You can call the declared tools to read, search and change files in the current workspace or
to run commands.  Some tools need the user's approval; if a call is declared cancelled, do not
retry it, explain what you would have done instead.
Keep answers short.
"""

    def __init__(self, model: str | None = None):
        self.model = model or settings.MODEL or self.DEFAULT_MODEL
        self.session_id = str(uuid.uuid4())
        self.history: List[Any] = []
        self.reset()

    def reset(self) -> None:
        """Forget the conversation history."""
        self.history = []

    def checkpoint(self) -> int:
        """Mark the current end of the history, for :meth:`rollback`."""
        return len(self.history)

    def rollback(self, mark: int) -> None:
        """
        Drop every history entry recorded after *mark*.

        Used when a turn is abandoned: providers reject a history whose last tool request has
        no matching result.
        """
        dropped = len(self.history) - mark
        if dropped > 0:
            logger.info("Rolling back %d history entries of session %s", dropped, self.session_id)
            del self.history[mark:]

    @abstractmethod
    def send_turn(
        self, parts: Sequence[Part], declarations: Sequence[ToolDeclaration] = ()
    ) -> Iterator[ResponseFragment]:
        """Send *parts* and lazily yield the reply fragments in arrival order."""

    @abstractmethod
    def send_message(self, text: str) -> ChatReply:
        """Send one text message and wait for the complete reply."""


# ---------------------------------------------------------------------------
# Concrete backends
# ---------------------------------------------------------------------------
@register_backend("gemini")
class GeminiBackend(BaseChatBackend):
    """Gemini backend using the Google GenAI SDK."""

    DEFAULT_MODEL = "gemini-2.5-flash"

    def __init__(self, model: str | None = None, api_key: str | None = None):
        api_key = api_key or settings.GEMINI_API_KEY
        if not api_key:
            raise BackendConfigError(
                "Please set GEMINI_API_KEY environment variable "
                "(get your key at https://aistudio.google.com/app/apikey)"
            )
        from google import genai  # pylint: disable=import-outside-toplevel

        self._client = genai.Client(api_key=api_key)
        self._native_ids: Set[str] = set()
        super().__init__(model)

    def _config(self, declarations: Sequence[ToolDeclaration], thoughts: bool = True) -> Any:
        from google.genai import types  # pylint: disable=import-outside-toplevel

        tools = None
        if declarations:
            tools = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=decl.name,
                            description=decl.description,
                            parameters_json_schema=decl.parameters,
                        )
                        for decl in declarations
                    ]
                )
            ]
        thinking = None
        if thoughts and settings.THINKING_BUDGET > 0:
            thinking = types.ThinkingConfig(
                include_thoughts=True, thinking_budget=settings.THINKING_BUDGET
            )
        return types.GenerateContentConfig(
            system_instruction=self.SYSTEM_PROMPT,
            max_output_tokens=settings.MAX_OUTPUT_TOKENS,
            tools=tools,
            thinking_config=thinking,
        )

    def _to_content(self, parts: Sequence[Part]) -> Any:
        from google.genai import types  # pylint: disable=import-outside-toplevel

        out = []
        for part in parts:
            if part.function_response is not None:
                fr = part.function_response
                call_id = fr.call_id if fr.call_id in self._native_ids else None
                out.append(
                    types.Part(
                        function_response=types.FunctionResponse(
                            id=call_id, name=fr.name, response=fr.response
                        )
                    )
                )
            elif part.text is not None:
                out.append(types.Part(text=part.text))
        return types.Content(role="user", parts=out)

    def send_turn(
        self, parts: Sequence[Part], declarations: Sequence[ToolDeclaration] = ()
    ) -> Iterator[ResponseFragment]:
        from google.genai import errors  # pylint: disable=import-outside-toplevel
        from google.genai import types  # pylint: disable=import-outside-toplevel

        self.history.append(self._to_content(parts))
        model_parts: List[Any] = []
        try:
            stream = self._client.models.generate_content_stream(
                model=self.model, contents=self.history, config=self._config(declarations)
            )
            for chunk in stream:
                if not chunk.candidates or chunk.candidates[0].content is None:
                    continue
                for part in chunk.candidates[0].content.parts or []:
                    model_parts.append(part)
                    if part.function_call is not None:
                        fc = part.function_call
                        if fc.id:
                            self._native_ids.add(fc.id)
                        yield ResponseFragment(
                            tool_call=ToolCallRequest(
                                call_id=fc.id, name=fc.name, args=dict(fc.args or {})
                            )
                        )
                    elif part.text:
                        yield ResponseFragment(text=part.text, is_thought=bool(part.thought))
        except (errors.APIError, httpx.HTTPError) as exc:
            self.history.pop()
            raise BackendError(f"Gemini request failed: {exc}") from exc

        self.history.append(types.Content(role="model", parts=model_parts))

    def send_message(self, text: str) -> ChatReply:
        from google.genai import errors  # pylint: disable=import-outside-toplevel

        self.history.append(self._to_content([Part(text=text)]))
        try:
            response = self._client.models.generate_content(
                model=self.model, contents=self.history, config=self._config((), thoughts=False)
            )
        except (errors.APIError, httpx.HTTPError) as exc:
            self.history.pop()
            raise BackendError(f"Gemini request failed: {exc}") from exc

        if response.candidates and response.candidates[0].content is not None:
            self.history.append(response.candidates[0].content)
        metadata = response.usage_metadata
        usage = TokenUsage(
            input_tokens=getattr(metadata, "prompt_token_count", None) or 0,
            output_tokens=getattr(metadata, "candidates_token_count", None) or 0,
        )
        return ChatReply(text=response.text or "", model=self.model, usage=usage)


@register_backend("anthropic")
class AnthropicBackend(BaseChatBackend):
    """Anthropic Claude backend with extended thinking."""

    DEFAULT_MODEL = "claude-sonnet-4-5"

    def __init__(self, model: str | None = None, api_key: str | None = None):
        api_key = api_key or settings.ANTHROPIC_API_KEY
        if not api_key:
            raise BackendConfigError("Please set ANTHROPIC_API_KEY environment variable")
        import anthropic  # pylint: disable=import-outside-toplevel

        self._client = anthropic.Anthropic(api_key=api_key, timeout=settings.REQUEST_TIMEOUT)
        super().__init__(model)

    @staticmethod
    def _to_blocks(parts: Sequence[Part]) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []
        for part in parts:
            if part.function_response is not None:
                fr = part.function_response
                blocks.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": fr.call_id,
                        "content": json.dumps(fr.response, default=str),
                        "is_error": fr.response.get("status") != "success",
                    }
                )
            elif part.text:
                blocks.append({"type": "text", "text": part.text})
        return blocks

    def _request(self, declarations: Sequence[ToolDeclaration]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": settings.MAX_OUTPUT_TOKENS,
            "system": self.SYSTEM_PROMPT,
            "messages": self.history,
        }
        if declarations:
            kwargs["tools"] = [
                {"name": d.name, "description": d.description, "input_schema": d.parameters}
                for d in declarations
            ]
        # Extended thinking needs a budget of at least 1024 tokens, below max_tokens
        if settings.THINKING_BUDGET >= 1024:
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": settings.THINKING_BUDGET}
            kwargs["max_tokens"] = max(kwargs["max_tokens"], settings.THINKING_BUDGET + 1024)
        return kwargs

    def send_turn(
        self, parts: Sequence[Part], declarations: Sequence[ToolDeclaration] = ()
    ) -> Iterator[ResponseFragment]:
        import anthropic  # pylint: disable=import-outside-toplevel

        self.history.append({"role": "user", "content": self._to_blocks(parts)})
        try:
            with self._client.messages.stream(**self._request(declarations)) as stream:
                for event in stream:
                    if event.type != "content_block_delta":
                        continue
                    if event.delta.type == "text_delta":
                        yield ResponseFragment(text=event.delta.text)
                    elif event.delta.type == "thinking_delta":
                        yield ResponseFragment(text=event.delta.thinking, is_thought=True)
                final = stream.get_final_message()
        except anthropic.APIError as exc:
            self.history.pop()
            raise BackendError(f"Anthropic request failed: {exc}") from exc

        # Thinking blocks (with signatures) must be sent back verbatim alongside tool_use blocks
        self.history.append({"role": "assistant", "content": final.content})
        for block in final.content:
            if block.type == "tool_use":
                yield ResponseFragment(
                    tool_call=ToolCallRequest(call_id=block.id, name=block.name, args=block.input)
                )

    def send_message(self, text: str) -> ChatReply:
        import anthropic  # pylint: disable=import-outside-toplevel

        self.history.append({"role": "user", "content": text})
        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=settings.MAX_OUTPUT_TOKENS,
                system=self.SYSTEM_PROMPT,
                messages=self.history,
            )
        except anthropic.APIError as exc:
            self.history.pop()
            raise BackendError(f"Anthropic request failed: {exc}") from exc

        self.history.append({"role": "assistant", "content": response.content})
        reply = "".join(block.text for block in response.content if block.type == "text")
        usage = TokenUsage(
            input_tokens=response.usage.input_tokens, output_tokens=response.usage.output_tokens
        )
        return ChatReply(text=reply, model=self.model, usage=usage)


class ToolCallAssembler:
    """
    Accumulates streamed tool-call deltas (keyed by index) into complete calls.

    OpenAI-style streams send the id and name once and the JSON arguments in pieces.
    """

    def __init__(self) -> None:
        self._calls: Dict[int, Dict[str, str]] = {}

    def add(
        self,
        index: int,
        call_id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> None:
        """Merge one delta."""
        entry = self._calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
        if call_id:
            entry["id"] = call_id
        if name:
            entry["name"] += name
        if arguments:
            entry["arguments"] += arguments

    def raw(self) -> List[Dict[str, str]]:
        """Assembled calls in index order, arguments still JSON-encoded."""
        return [self._calls[i] for i in sorted(self._calls)]

    def requests(self) -> List[ToolCallRequest]:
        """Assembled calls as :class:`ToolCallRequest` objects."""
        requests = []
        for entry in self.raw():
            try:
                args = json.loads(entry["arguments"] or "{}")
            except json.JSONDecodeError:
                logger.warning(
                    "Malformed arguments for tool '%s': %r", entry["name"], entry["arguments"]
                )
                args = {}
            if not isinstance(args, dict):
                args = {}
            requests.append(ToolCallRequest(call_id=entry["id"], name=entry["name"], args=args))
        return requests


@register_backend("openai")
class OpenAIBackend(BaseChatBackend):
    """OpenAI chat-completions backend."""

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(self, model: str | None = None, api_key: str | None = None):
        api_key = api_key or settings.OPENAI_API_KEY
        if not api_key:
            raise BackendConfigError("Please set OPENAI_API_KEY environment variable")
        import openai  # pylint: disable=import-outside-toplevel

        self._client = openai.OpenAI(api_key=api_key, timeout=settings.REQUEST_TIMEOUT)
        super().__init__(model)

    def reset(self) -> None:
        self.history = [{"role": "system", "content": self.SYSTEM_PROMPT}]

    @staticmethod
    def _to_messages(parts: Sequence[Part]) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        for part in parts:
            if part.function_response is not None:
                fr = part.function_response
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": fr.call_id,
                        "content": json.dumps(fr.response, default=str),
                    }
                )
        text = _joined_text(parts)
        if text:
            messages.append({"role": "user", "content": text})
        return messages

    def send_turn(
        self, parts: Sequence[Part], declarations: Sequence[ToolDeclaration] = ()
    ) -> Iterator[ResponseFragment]:
        import openai  # pylint: disable=import-outside-toplevel

        new_messages = self._to_messages(parts)
        self.history.extend(new_messages)
        kwargs: Dict[str, Any] = {"model": self.model, "messages": self.history, "stream": True}
        if declarations:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": d.name,
                        "description": d.description,
                        "parameters": d.parameters,
                    },
                }
                for d in declarations
            ]

        text_parts: List[str] = []
        assembler = ToolCallAssembler()
        try:
            for chunk in self._client.chat.completions.create(**kwargs):
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    text_parts.append(delta.content)
                    yield ResponseFragment(text=delta.content)
                for tc in delta.tool_calls or []:
                    fn = tc.function
                    assembler.add(
                        tc.index,
                        call_id=tc.id,
                        name=fn.name if fn else None,
                        arguments=fn.arguments if fn else None,
                    )
        except openai.OpenAIError as exc:
            del self.history[len(self.history) - len(new_messages) :]
            raise BackendError(f"OpenAI request failed: {exc}") from exc

        requests = assembler.requests()
        message: Dict[str, Any] = {"role": "assistant", "content": "".join(text_parts) or None}
        if requests:
            message["tool_calls"] = [
                {
                    "id": request.call_id,
                    "type": "function",
                    "function": {"name": request.name, "arguments": json.dumps(request.args)},
                }
                for request in requests
            ]
        self.history.append(message)
        for request in requests:
            yield ResponseFragment(tool_call=request)

    def send_message(self, text: str) -> ChatReply:
        import openai  # pylint: disable=import-outside-toplevel

        self.history.append({"role": "user", "content": text})
        try:
            resp = self._client.chat.completions.create(model=self.model, messages=self.history)
        except openai.OpenAIError as exc:
            self.history.pop()
            raise BackendError(f"OpenAI request failed: {exc}") from exc

        content = resp.choices[0].message.content or ""
        self.history.append({"role": "assistant", "content": content})
        usage = TokenUsage()
        if resp.usage is not None:
            usage = TokenUsage(
                input_tokens=resp.usage.prompt_tokens, output_tokens=resp.usage.completion_tokens
            )
        return ChatReply(text=content, model=self.model, usage=usage)


@register_backend("ollama")
class OllamaBackend(BaseChatBackend):
    """Self-hosted models served by Ollama, streamed as NDJSON over httpx."""

    DEFAULT_MODEL = "qwen3"

    def __init__(self, model: str | None = None, endpoint: str | None = None):
        self.endpoint = (endpoint or settings.OLLAMA_ENDPOINT).rstrip("/")
        self._http = httpx.Client(base_url=self.endpoint, timeout=settings.REQUEST_TIMEOUT)
        super().__init__(model)

    def reset(self) -> None:
        self.history = [{"role": "system", "content": self.SYSTEM_PROMPT}]

    @staticmethod
    def _to_messages(parts: Sequence[Part]) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [
            {
                "role": "tool",
                "tool_name": part.function_response.name,
                "content": json.dumps(part.function_response.response, default=str),
            }
            for part in parts
            if part.function_response is not None
        ]
        text = _joined_text(parts)
        if text:
            messages.append({"role": "user", "content": text})
        return messages

    def _payload(self, declarations: Sequence[ToolDeclaration], stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self.history,
            "stream": stream,
            "options": {"num_predict": settings.MAX_OUTPUT_TOKENS},
        }
        if stream and settings.THINKING_BUDGET > 0:
            payload["think"] = True
        if declarations:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": d.name,
                        "description": d.description,
                        "parameters": d.parameters,
                    },
                }
                for d in declarations
            ]
        return payload

    def send_turn(
        self, parts: Sequence[Part], declarations: Sequence[ToolDeclaration] = ()
    ) -> Iterator[ResponseFragment]:
        new_messages = self._to_messages(parts)
        self.history.extend(new_messages)
        text_parts: List[str] = []
        raw_calls: List[Dict[str, Any]] = []
        try:
            with self._http.stream(
                "POST", "/api/chat", json=self._payload(declarations, stream=True)
            ) as resp:
                resp.raise_for_status()
                for line in resp.iter_lines():
                    if not line.strip():
                        continue
                    data = json.loads(line)
                    if "error" in data:
                        raise BackendError(f"Ollama error: {data['error']}")
                    message = data.get("message") or {}
                    if message.get("thinking"):
                        yield ResponseFragment(text=message["thinking"], is_thought=True)
                    if message.get("content"):
                        text_parts.append(message["content"])
                        yield ResponseFragment(text=message["content"])
                    raw_calls.extend(message.get("tool_calls") or [])
        except (httpx.HTTPError, json.JSONDecodeError, BackendError) as exc:
            del self.history[len(self.history) - len(new_messages) :]
            if isinstance(exc, BackendError):
                raise
            raise BackendError(f"Ollama request failed: {exc}") from exc

        assistant: Dict[str, Any] = {"role": "assistant", "content": "".join(text_parts)}
        if raw_calls:
            assistant["tool_calls"] = raw_calls
        self.history.append(assistant)
        for raw in raw_calls:
            fn = raw.get("function") or {}
            yield ResponseFragment(
                tool_call=ToolCallRequest(
                    call_id=raw.get("id"), name=fn.get("name", ""), args=fn.get("arguments") or {}
                )
            )

    def send_message(self, text: str) -> ChatReply:
        self.history.append({"role": "user", "content": text})
        try:
            resp = self._http.post("/api/chat", json=self._payload((), stream=False))
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            self.history.pop()
            raise BackendError(f"Ollama request failed: {exc}") from exc

        content = (data.get("message") or {}).get("content", "")
        self.history.append({"role": "assistant", "content": content})
        usage = TokenUsage(
            input_tokens=data.get("prompt_eval_count", 0), output_tokens=data.get("eval_count", 0)
        )
        return ChatReply(text=content, model=self.model, usage=usage)
