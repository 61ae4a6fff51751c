"""
Step 3: Built-in Tools - Detection and Execution.

Shows how the model decides whether a tool is needed and how requested calls can be run
directly with :func:`execute_tool_call`, without the approval gate.
"""

import logging
import time
from typing import (
    List,
    Tuple,
)

from toolgate.agent.tool_executor import execute_tool_call
from toolgate.chat.backends import (
    BaseChatBackend,
    load_backend,
)
from toolgate.common import (
    AnsiColors,
    colored_print,
)
from toolgate.core.schema import (
    Part,
    ToolCallRequest,
)
from toolgate.steps import workspace_root
from toolgate.tools import (
    ToolRegistry,
    create_tool_registry,
)

logger = logging.getLogger(__name__)

TOOLS = ("read_file", "write_file", "list_directory")
DEMO_FILE = "toolgate_demo.txt"
PAUSE_SECONDS = 2.0  # stay clear of rate limits between parts


def stream_and_collect(
    chat: BaseChatBackend, registry: ToolRegistry, prompt: str
) -> Tuple[str, List[ToolCallRequest]]:
    """Stream one turn, echoing content text; return the text and the requested calls."""
    text_parts: List[str] = []
    calls: List[ToolCallRequest] = []
    for fragment in chat.send_turn([Part(text=prompt)], registry.get_declarations()):
        if fragment.tool_call is not None:
            calls.append(fragment.tool_call)
        elif fragment.text and not fragment.is_thought:
            text_parts.append(fragment.text)
            print(fragment.text, end="", flush=True)
    return "".join(text_parts), calls


def run(
    backend: str | None = None, model: str | None = None, pause: float = PAUSE_SECONDS
) -> None:
    """Run the three parts of the tools demo and clean up afterwards."""
    colored_print("🚀 toolgate - Tools Demo\n", AnsiColors.BLUE)
    chat = load_backend(backend, model)
    root = workspace_root()
    registry = create_tool_registry(TOOLS, root)

    print("🔨 Available Tools:")
    for declaration in registry.get_declarations():
        print(f"- {declaration.name}: {declaration.description}")
    print()

    # Part 1: no tool needed
    colored_print("📋 Part 1: Tool Detection - Simple Question", AnsiColors.BRIGHT)
    prompt = "What's the capital of France?"
    print(f"👤 User: {prompt}")
    _, calls = stream_and_collect(chat, registry, prompt)
    print(f"\n\n✅ Tool calls detected: {'Yes' if calls else 'No'} (Expected: No)\n")
    chat.reset()
    time.sleep(pause)

    # Part 2: direct execution of the requested calls
    colored_print("📝 Part 2: Tool Execution - File Creation", AnsiColors.BRIGHT)
    prompt = (
        f'Create a file called {DEMO_FILE} with the content '
        '"Hello from toolgate! This file was created automatically."'
    )
    print(f"👤 User: {prompt}\n")
    _, calls = stream_and_collect(chat, registry, prompt)
    if calls:
        colored_print("\n\n🔧 Executing tool calls...\n", AnsiColors.BLUE)
        for request in calls:
            print(f"📌 Tool: {request.name}")
            print(f"📋 Args: {request.args}")
            response = execute_tool_call(registry, request)
            if response.error:
                colored_print(f"❌ Error: {response.error}\n", AnsiColors.RED)
            else:
                colored_print("✅ Success!", AnsiColors.GREEN)
                if response.result_display:
                    print(f"📊 Result: {response.result_display}\n")
    else:
        print("\n❓ No function calls detected in the response")
    chat.reset()
    time.sleep(pause)

    # Part 3: verify with another tool
    colored_print("\n📂 Part 3: Verification - List Files", AnsiColors.BRIGHT)
    prompt = "List all .txt files in the current directory"
    print(f"👤 User: {prompt}\n")
    _, calls = stream_and_collect(chat, registry, prompt)
    for request in calls:
        response = execute_tool_call(registry, request)
        if not response.error and response.result_display:
            print("📁 Directory contents:")
            print(response.result_display)
        elif response.error:
            colored_print(f"❌ Failed to execute verification: {response.error}", AnsiColors.RED)

    print("\n\n🧹 Cleaning up...")
    demo_path = root / DEMO_FILE
    if demo_path.exists():
        demo_path.unlink()
        print("✅ File deleted\n")
    else:
        print("ℹ️  File already cleaned up\n")
    colored_print("🎉 Tools demo complete!\n", AnsiColors.GREEN)
