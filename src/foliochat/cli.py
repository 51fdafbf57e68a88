"""CLI interface for foliochat."""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys

import click
from rich.console import Console
from rich.rule import Rule
from rich.text import Text

from . import __version__
from .client import (
    GeminiModelClient,
    LocalToolExecutor,
    ModelClient,
    ProxyModelClient,
    ProxyToolExecutor,
    ToolExecutor,
)
from .config import (
    ASSISTANT_NAME,
    DATA_DIR,
    GEMINI_API_KEY,
    MODEL_ENDPOINT,
    SEED_GREETING,
    STORAGE_PATH,
    TOOL_ENDPOINT,
)
from .engine import ChatEngine
from .greeting import welcome_back
from .models import Conversation
from .renderer import (
    CodeBlock,
    copy_to_clipboard,
    render_error,
    render_message,
    render_tool_indicator,
)
from .storage import LocalStorage
from .store import ConversationStore
from .tools import ToolRegistry

REPL_HELP = """Commands:
  /new          start a new conversation
  /clear        clear the current conversation
  /history      list conversations
  /load ID      switch to a conversation
  /delete ID    delete a conversation
  /copy N       copy code block N to the clipboard
  /quit         leave"""


class TerminalView:
    """ChatView that prints to a rich console and remembers code blocks for /copy."""

    def __init__(self, console: Console):
        self.console = console
        self.code_blocks: list[CodeBlock] = []

    def show_message(self, role: str, text: str) -> None:
        rendered = render_message(role, text, code_start=len(self.code_blocks) + 1)
        self.code_blocks.extend(rendered.code_blocks)
        self.console.print(rendered.renderable)

    def show_tool_indicator(self, name: str) -> None:
        self.console.print(render_tool_indicator(name))

    def show_error(self, text: str) -> None:
        self.console.print(render_error(text))

    def set_thinking(self, thinking: bool) -> None:
        if thinking:
            self.console.print(Text("Thinking...", style="dim"))

    def set_title(self, conversation_id: str, title: str) -> None:
        self.console.print(Text(f"Conversation titled: {title}", style="dim"))

    def show_conversation(self, conversation: Conversation) -> None:
        self.code_blocks = []
        self.console.print(Rule(conversation.title))
        for msg in conversation.messages:
            if msg.text is not None:
                self.show_message(msg.role, msg.text)
            elif msg.function_call is not None:
                self.show_tool_indicator(msg.function_call.name)


def _open_store() -> ConversationStore:
    return ConversationStore(LocalStorage(STORAGE_PATH), seed_greeting=SEED_GREETING)


def _build_clients() -> tuple[ModelClient, ToolExecutor]:
    """Pick proxy or direct clients from the environment."""
    if not MODEL_ENDPOINT and not GEMINI_API_KEY:
        raise click.ClickException(
            "No model configured. Set FOLIOCHAT_MODEL_ENDPOINT to your chat proxy "
            "or GEMINI_API_KEY to call Gemini directly."
        )

    registry = ToolRegistry()
    tools: ToolExecutor
    if TOOL_ENDPOINT:
        tools = ProxyToolExecutor(TOOL_ENDPOINT)
    else:
        tools = LocalToolExecutor(registry)

    model: ModelClient
    if MODEL_ENDPOINT:
        model = ProxyModelClient(MODEL_ENDPOINT)
    else:
        model = GeminiModelClient(GEMINI_API_KEY, tools=registry)
    return model, tools


def _print_history(console: Console, store: ConversationStore) -> None:
    conversations = store.list_conversations()
    if not conversations:
        console.print("No conversations yet.")
        return
    for conv in conversations:
        marker = "*" if conv.id == store.current_id else " "
        console.print(f"{marker} {conv.id}  {conv.title}  ({len(conv.messages)} msgs)", highlight=False)


def handle_command(line: str, store: ConversationStore, view: TerminalView) -> bool:
    """Run a REPL slash command. Returns False when the session should end."""
    name, _, arg = line.strip().partition(" ")
    arg = arg.strip()
    console = view.console

    if name in ("/quit", "/exit"):
        return False
    if name == "/help":
        console.print(REPL_HELP, highlight=False)
    elif name == "/new":
        store.create_conversation()
        view.show_conversation(store.current)
    elif name == "/clear":
        if store.current_id is None:
            console.print("No conversation selected.")
        else:
            store.clear_conversation(store.current_id)
            view.show_conversation(store.current)
    elif name == "/history":
        _print_history(console, store)
    elif name == "/load":
        conv = store.load_conversation(arg)
        if conv is None:
            view.show_error(f"Conversation not found: {arg}")
        else:
            view.show_conversation(conv)
    elif name == "/delete":
        if arg not in store:
            view.show_error(f"Conversation not found: {arg}")
        else:
            store.delete_conversation(arg)
            console.print(f"Deleted {arg}")
            if store.current is not None:
                view.show_conversation(store.current)
            else:
                console.print(f"Welcome! I am {ASSISTANT_NAME}. Say something to start a new chat.")
    elif name == "/copy":
        try:
            block = view.code_blocks[int(arg) - 1]
        except (ValueError, IndexError):
            view.show_error(f"No code block {arg or '?'} (have {len(view.code_blocks)}).")
        else:
            copy_to_clipboard(block.code, console.file)
            console.print(f"Copied code block {block.index}.")
    else:
        view.show_error(f"Unknown command: {name}. Try /help.")
    return True


async def _chat_session(new_chat: bool, conversation_id: str | None) -> None:
    model, tools = _build_clients()
    store = _open_store()
    console = Console()
    view = TerminalView(console)
    engine = ChatEngine(store, model, tools, view)

    try:
        greeting = await welcome_back(store.storage, model)
        console.print(greeting or f"Welcome! I am {ASSISTANT_NAME}. Type /help for commands.")

        if conversation_id:
            if store.load_conversation(conversation_id) is None:
                raise click.ClickException(f"Conversation not found: {conversation_id}")
        elif new_chat:
            store.create_conversation()
        if store.current is not None:
            view.show_conversation(store.current)

        while True:
            try:
                # Read input off the event loop so background title calls keep running
                line = await asyncio.to_thread(
                    click.prompt, "You", default="", show_default=False, prompt_suffix="> "
                )
            except (click.Abort, EOFError):
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if not handle_command(line, store, view):
                    break
                continue
            await engine.process_user_message(line)
    finally:
        await engine.aclose()
        store.close()


@click.group()
@click.version_option(version=__version__, prog_name="foliochat")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
def cli(verbose: bool):
    """foliochat: the portfolio site's AI chatbot, in your terminal.

    Chats are saved locally and titled automatically. The assistant can look
    up what's playing on Last.fm and the current time in India.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


@cli.command()
@click.option("--new", "new_chat", is_flag=True, help="Start a fresh conversation")
@click.option("--conversation", "conversation_id", help="Resume the conversation with this id")
def chat(new_chat: bool, conversation_id: str | None):
    """Chat interactively. Type /help inside the session for commands."""
    asyncio.run(_chat_session(new_chat, conversation_id))


@cli.command()
def history():
    """List saved conversations, newest first."""
    store = _open_store()
    _print_history(Console(), store)
    store.close()


@cli.command()
@click.argument("conversation_id")
def show(conversation_id: str):
    """Print a saved conversation."""
    store = _open_store()
    conv = store.get(conversation_id)
    store.close()
    if conv is None:
        raise click.ClickException(f"Conversation not found: {conversation_id}")
    TerminalView(Console()).show_conversation(conv)


@cli.command()
@click.argument("conversation_id")
@click.confirmation_option(prompt="Delete this conversation?")
def delete(conversation_id: str):
    """Delete a saved conversation."""
    store = _open_store()
    try:
        if conversation_id not in store:
            raise click.ClickException(f"Conversation not found: {conversation_id}")
        store.delete_conversation(conversation_id)
    finally:
        store.close()
    click.echo(f"Deleted {conversation_id}")


@cli.command()
@click.argument("conversation_id")
def clear(conversation_id: str):
    """Remove all messages from a conversation, keeping its title."""
    store = _open_store()
    try:
        if conversation_id not in store:
            raise click.ClickException(f"Conversation not found: {conversation_id}")
        store.clear_conversation(conversation_id)
    finally:
        store.close()
    click.echo(f"Cleared {conversation_id}")


@cli.command()
def stats():
    """Show statistics about your saved conversations."""
    store = _open_store()
    s = store.stats()
    store.close()

    click.echo()
    click.echo(click.style("foliochat Statistics", bold=True))
    click.echo(f"  Conversations:  {s['total_conversations']:,}")
    click.echo(f"  Messages:       {s['total_messages']:,}")
    click.echo(f"  Avg msgs/conv:  {s['avg_messages_per_conversation']}")
    by_role = s["messages_by_role"]
    click.echo(f"  By role:        user {by_role['user']:,} | model {by_role['model']:,} | tool {by_role['tool']:,}")
    click.echo(f"  Location:       {DATA_DIR}")
    click.echo()


@cli.command()
def serve():
    """Start the MCP server (stdio transport).

    Lets MCP clients browse saved chats and call the chatbot's tools.
    """
    from .server import mcp

    mcp.run(transport="stdio")


@cli.command()
@click.confirmation_option(prompt="This will delete all saved conversations. Are you sure?")
def reset():
    """Delete all saved data and start fresh."""
    if DATA_DIR.exists():
        shutil.rmtree(DATA_DIR)
        click.echo(f"Deleted {DATA_DIR}")
    else:
        click.echo("No data to delete.")
