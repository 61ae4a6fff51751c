"""
Step 1: Hello World.

Create a chat backend from the settings, send one message and print the reply together with
some response metadata.
"""

from toolgate.chat.backends import load_backend
from toolgate.common import (
    AnsiColors,
    colored_print,
)

PROMPT = (
    "Hello! I'm learning about tool-using language models. "
    "Can you tell me an interesting fact about the Gemini constellation?"
)


def run(backend: str | None = None, model: str | None = None) -> None:
    """Send :data:`PROMPT` and print the answer."""
    colored_print("🚀 toolgate - Hello World Example\n", AnsiColors.BLUE)
    chat = load_backend(backend, model)

    print("📝 Sending message...\n")
    reply = chat.send_message(PROMPT)

    print("🤖 Assistant says:\n")
    print(reply.text)
    colored_print(
        "\n✅ Success! You've made your first call through a chat backend.", AnsiColors.GREEN
    )

    print("\n📊 Response metadata:")
    print(f"- Session ID: {chat.session_id}")
    print(f"- Model: {reply.model}")
    print(f"- Token count: {reply.usage.output_tokens} tokens")
