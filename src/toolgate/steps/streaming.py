"""
Step 2: Streaming and Thinking.

Stream a reply fragment by fragment, rendering the model's thoughts separately from the answer.
The thinking budget comes from ``THINKING_BUDGET``.
"""

from toolgate.chat.backends import load_backend
from toolgate.client.console import StreamPrinter
from toolgate.common import (
    AnsiColors,
    colored_print,
)
from toolgate.core.schema import Part

PROMPT = (
    "Explain how multimodal language models work. Think step by step about how they process "
    "different types of inputs (text, images, audio, video) and generate unified responses."
)


def run(backend: str | None = None, model: str | None = None) -> None:
    """Stream :data:`PROMPT` and print thinking/response statistics."""
    colored_print("🚀 toolgate - Streaming & Thinking Example\n", AnsiColors.BLUE)
    chat = load_backend(backend, model)

    print(f"📝 User: {PROMPT}\n")
    printer = StreamPrinter()
    for fragment in chat.send_turn([Part(text=PROMPT)]):
        printer(fragment)

    colored_print("\n\n✅ Streaming complete!", AnsiColors.GREEN)
    print(f"📊 Thinking: {printer.thought_chars} characters")
    print(f"📊 Response: {printer.content_chars} characters")
