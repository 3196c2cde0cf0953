import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from dotenv import load_dotenv
from loguru import logger

from claude_web_client.app_config import load_json_config, parse_app_config, resolve_runtime_env
from claude_web_client.errors import ClaudeWebError
from claude_web_client.logging_config import setup_logging
from claude_web_client.models import History
from claude_web_client.session import ChatSession

_HELP = """Commands:
  list                          list conversations
  new [name]                    create a conversation
  rename <id> <title>           rename a conversation
  delete <id>                   delete a conversation
  history <id>                  show a conversation's messages
  send <id> <prompt>            send a message
  attach <id> <path> <prompt>   send a message with a document
  help                          show this help
  exit                          quit"""


def _format_reply(reply: Any) -> str:
    if isinstance(reply, dict) and isinstance(reply.get("completion"), str):
        return reply["completion"]
    return json.dumps(reply, indent=2, ensure_ascii=False)


def _format_history(history: History) -> str:
    lines = [f"{history.name} ({history.uuid}) -- {len(history.chat_messages)} messages"]
    for message in history.chat_messages:
        lines.append(f"  [{message.index}] {message.sender}: {message.text}")
    return "\n".join(lines)


class Shell:
    def __init__(self, session: ChatSession):
        self._session = session
        self._commands: dict[str, Callable[[list[str]], Awaitable[None]]] = {
            "list": self._list,
            "new": self._new,
            "rename": self._rename,
            "delete": self._delete,
            "history": self._history,
            "send": self._send,
            "attach": self._attach,
        }

    async def try_handle(self, line: str) -> bool:
        """Run one command line. Returns False for unknown commands."""
        name, _, rest = line.strip().partition(" ")
        if name == "help":
            print(_HELP)
            return True
        handler = self._commands.get(name)
        if handler is None:
            return False
        await handler(rest.split())
        return True

    async def _list(self, args: list[str]) -> None:
        conversations = await self._session.list_conversations()
        conversations.sort(key=lambda c: c.updated_at)
        for c in conversations:
            print(f"{c.uuid}  {c.updated_at:%Y-%m-%d %H:%M}  {c.name}")
        print(f"{len(conversations)} conversations")

    async def _new(self, args: list[str]) -> None:
        if args:
            conversation_id = await self._session.create_conversation(" ".join(args))
        else:
            conversation_id = await self._session.create_conversation()
        print(conversation_id)

    async def _rename(self, args: list[str]) -> None:
        if len(args) < 2:
            print("Usage: rename <id> <title>")
            return
        await self._session.rename_conversation(args[0], " ".join(args[1:]))
        print("Renamed.")

    async def _delete(self, args: list[str]) -> None:
        if len(args) != 1:
            print("Usage: delete <id>")
            return
        await self._session.delete_conversation(args[0])
        print("Deleted.")

    async def _history(self, args: list[str]) -> None:
        if len(args) != 1:
            print("Usage: history <id>")
            return
        print(_format_history(await self._session.fetch_history(args[0])))

    async def _send(self, args: list[str]) -> None:
        if len(args) < 2:
            print("Usage: send <id> <prompt>")
            return
        reply = await self._session.send_message(args[0], " ".join(args[1:]))
        print(_format_reply(reply))

    async def _attach(self, args: list[str]) -> None:
        if len(args) < 3:
            print("Usage: attach <id> <path> <prompt>")
            return
        reply = await self._session.send_message(args[0], " ".join(args[2:]), attachment_path=args[1])
        print(_format_reply(reply))


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env()

    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    if not env.cookie:
        logger.error(f"{env.cookie_env_var} environment variable is required.")
        sys.exit(1)

    try:
        session = await ChatSession.connect(
            env.cookie,
            app.proxies + env.extra_proxies,
            timeout=app.timeout_seconds,
            model=app.model,
            timezone=app.timezone,
            retry_attempts=app.retry_attempts,
        )
    except ClaudeWebError as ex:
        logger.error(f"Could not connect: {ex}")
        sys.exit(1)

    async with session:
        print("claude-web-client (type 'exit' to quit, 'help' for commands)")
        print(f"Organization: {session.organization_id}")
        if session.proxies:
            print(f"Proxies: {', '.join(p.masked for p in session.proxies)}")
        if log_descriptions:
            print(f"Logging: {', '.join(log_descriptions)}")
        print()

        shell = Shell(session)
        while True:
            try:
                user_input = input("claude> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                if not await shell.try_handle(trimmed):
                    print(f"Unknown command: {trimmed.split(' ')[0]} (try 'help')")
            except ClaudeWebError as ex:
                logger.error(f"{type(ex).__name__}: {ex}")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
