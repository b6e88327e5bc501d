"""
tinkerchat CLI entry point.

Provides an interactive chat REPL and utility commands for inspecting
and editing stored sessions.
"""

import argparse
import asyncio
import sys
from collections.abc import AsyncIterator
from pathlib import Path

from tinkerchat import __version__
from tinkerchat.components import ChatComponents
from tinkerchat.config.logging import get_logger, setup_logging
from tinkerchat.config.settings import Settings, load_settings
from tinkerchat.context.assembler import render_record
from tinkerchat.conversation.events import TurnEvent
from tinkerchat.conversation.orchestrator import ConversationOrchestrator


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="tinkerchat",
        description="Streaming LLM chat with budgeted context and persistent sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"tinkerchat {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("config", help="Show current configuration")

    chat_parser = subparsers.add_parser(
        "chat",
        help="Interactive chat (/regen, /truncate N, /history, /quit)",
    )
    chat_parser.add_argument(
        "--session",
        default=None,
        help="Resume an existing session (default: start a new one)",
    )
    chat_parser.add_argument("--title", default=None, help="Title for a new session")

    ask_parser = subparsers.add_parser("ask", help="Ask a single question and print the reply")
    ask_parser.add_argument("question", help='Question to ask, e.g. "What is a monad?"')
    ask_parser.add_argument(
        "--session",
        default=None,
        help="Ask within an existing session (default: a new one)",
    )

    subparsers.add_parser("sessions", help="List stored sessions")

    history_parser = subparsers.add_parser("history", help="Show a session's records")
    history_parser.add_argument("session_id", help="Session to show")

    truncate_parser = subparsers.add_parser(
        "truncate",
        help="Delete every record after the one at INDEX",
    )
    truncate_parser.add_argument("session_id", help="Session to truncate")
    truncate_parser.add_argument("index", type=int, help="Index of the last record to keep")

    return parser


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    logger.info("\n=== tinkerchat Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"\nLLM Provider: {settings.llm.provider}")
    logger.info(f"LLM Model: {settings.llm.model}")
    logger.info(f"LLM Base URL: {settings.llm.base_url}")
    logger.info(f"LLM API Key: {'Set' if settings.llm.api_key else 'Not set'}")
    logger.info(f"\nContext Window: {settings.context.max_context_tokens or 'provider default'}")
    logger.info(f"Response Reserve: {settings.context.response_reserve}")
    logger.info(f"Knowledge Per Turn: {settings.context.knowledge_k}")
    logger.info(f"\nStorage Backend: {settings.storage.backend}")
    logger.info(f"Storage Path: {settings.storage.vector_db_path}")
    logger.info(f"Project: {settings.storage.project_id}")
    logger.info(f"\nEmbedding Model: {settings.embedding.model}")
    logger.info(f"Embedding Device: {settings.embedding.device}")

    return 0


async def _print_events(events: AsyncIterator[TurnEvent]) -> int:
    """Stream a turn to stdout. Returns 1 if the turn failed."""
    status = 0
    async for event in events:
        if event.type == "delta":
            print(event.content, end="", flush=True)
        elif event.type == "tool_use":
            print(f"\n[tool call {event.tool_use.id}: {event.tool_use.name} {event.tool_use.input}]")
        elif event.type == "stream_ended":
            print()
            if event.usage:
                print(
                    f"(tokens: {event.usage.total_tokens} = prompt {event.usage.prompt_tokens}"
                    f" + completion {event.usage.completion_tokens})",
                    file=sys.stderr,
                )
        elif event.type == "error":
            print(f"\nError: {event.message}", file=sys.stderr)
            status = 1
    return status


async def _print_history(orchestrator: ConversationOrchestrator) -> None:
    for i, record in enumerate(await orchestrator.records()):
        pin = "*" if record.pinned else " "
        text = render_record(record).replace("\n", " ")
        if len(text) > 100:
            text = text[:100] + "..."
        print(f"{i:>4}{pin} [{record.kind.value}] {text}")


async def _chat_loop(orchestrator: ConversationOrchestrator) -> int:
    logger = get_logger(__name__)
    print(f"Session {orchestrator.session.id} ({orchestrator.provider_info.id})")
    print("Commands: /regen, /truncate N, /history, /quit\n")

    while True:
        try:
            line = await asyncio.to_thread(input, "you> ")
        except EOFError:
            print()
            return 0

        line = line.strip()
        if not line:
            continue
        if line in ("/quit", "/exit"):
            return 0
        if line == "/history":
            await _print_history(orchestrator)
            continue
        if line.startswith("/truncate"):
            try:
                removed = await orchestrator.truncate_after(int(line.split()[1]))
            except (IndexError, ValueError) as e:
                print(f"Usage: /truncate N ({e})", file=sys.stderr)
                continue
            print(f"Removed {removed} records")
            continue

        if line == "/regen":
            try:
                events = orchestrator.regenerate()
                print("ai> ", end="", flush=True)
                await _print_events(events)
            except ValueError as e:
                logger.warning(str(e))
            continue

        print("ai> ", end="", flush=True)
        await _print_events(orchestrator.process_turn(line))


async def cmd_chat(args, settings: Settings) -> int:
    """Interactive chat session."""
    logger = get_logger(__name__)
    factory = ChatComponents(settings)

    try:
        async with factory.create_embedder() as embedder, \
                   factory.create_repository() as repository, \
                   factory.create_provider() as provider:

            registry = factory.create_registry(provider, repository, embedder)
            orchestrator = await registry.get_or_create_session(args.session, title=args.title)
            return await _chat_loop(orchestrator)

    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logger.error(f"Chat failed: {e}", exc_info=True)
        return 1


async def cmd_ask(args, settings: Settings) -> int:
    """Ask one question and stream the answer."""
    logger = get_logger(__name__)
    factory = ChatComponents(settings)

    try:
        async with factory.create_embedder() as embedder, \
                   factory.create_repository() as repository, \
                   factory.create_provider() as provider:

            registry = factory.create_registry(provider, repository, embedder)
            orchestrator = await registry.get_or_create_session(args.session)
            logger.info(f"Sending to {provider.info.id}...")
            status = await _print_events(orchestrator.process_turn(args.question))
            print(f"(session: {orchestrator.session.id})", file=sys.stderr)
            return status

    except Exception as e:
        logger.error(f"Ask failed: {e}", exc_info=True)
        return 1


async def cmd_sessions(settings: Settings) -> int:
    """List stored sessions."""
    logger = get_logger(__name__)

    try:
        async with ChatComponents(settings).create_repository() as repository:
            sessions = await repository.list_sessions()
    except Exception as e:
        logger.error(f"Could not list sessions: {e}", exc_info=True)
        return 1

    if not sessions:
        print("No sessions yet. Start one with 'tinkerchat chat'.")
        return 0

    for session in sessions:
        model = session.metadata.get("model", "?")
        print(f"{session.id}  {session.updated_at:%Y-%m-%d %H:%M}  {model:<30}  {session.title}")
    return 0


async def cmd_history(args, settings: Settings) -> int:
    """Show a session's records."""
    logger = get_logger(__name__)
    factory = ChatComponents(settings)

    try:
        async with factory.create_repository() as repository:
            registry = factory.create_registry(
                factory.create_provider(), repository, factory.create_embedder()
            )
            orchestrator = await registry.get_session(args.session_id)
            if orchestrator is None:
                print(f"Session not found: {args.session_id}", file=sys.stderr)
                return 1
            await _print_history(orchestrator)
            return 0

    except Exception as e:
        logger.error(f"Could not show history: {e}", exc_info=True)
        return 1


async def cmd_truncate(args, settings: Settings) -> int:
    """Delete records after an index."""
    logger = get_logger(__name__)
    factory = ChatComponents(settings)

    try:
        async with factory.create_repository() as repository:
            registry = factory.create_registry(
                factory.create_provider(), repository, factory.create_embedder()
            )
            removed = await registry.truncate_session(args.session_id, args.index)
    except IndexError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error(f"Truncate failed: {e}", exc_info=True)
        return 1

    if removed is None:
        print(f"Session not found: {args.session_id}", file=sys.stderr)
        return 1

    print(f"Removed {removed} records")
    return 0


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Load settings
    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    if args.log_level:
        settings.log_level = args.log_level

    setup_logging(settings)

    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "chat":
        return asyncio.run(cmd_chat(args, settings))
    elif args.command == "ask":
        return asyncio.run(cmd_ask(args, settings))
    elif args.command == "sessions":
        return asyncio.run(cmd_sessions(settings))
    elif args.command == "history":
        return asyncio.run(cmd_history(args, settings))
    elif args.command == "truncate":
        return asyncio.run(cmd_truncate(args, settings))
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
