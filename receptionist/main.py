"""CLI entry point for the salon receptionist.

A terminal chat loop for testing and development: sessions live in process
memory and replies are printed instead of sent.  For production, use the
FastAPI server (``receptionist/server.py``).

Usage:
    python -m receptionist.main                      # normal mode (quiet)
    python -m receptionist.main --debug              # debug mode (shows API calls)
    python -m receptionist.main --business acme --admin
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid

from dotenv import load_dotenv

from receptionist.engine.coordinator import TurnCoordinator
from receptionist.engine.invoker import ReasoningInvoker
from receptionist.services.record_store import RecordStoreClient
from receptionist.services.session_store import InMemorySessionStore
from receptionist.tools.registry import build_default_registry

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("receptionist").setLevel(logging.DEBUG if debug else logging.INFO)


async def _print_reply(business_id: str, user_id: str, text: str) -> None:
    print(f"\nAssistant: {text}\n")


async def chat(business_id: str, user_id: str, admin: bool) -> None:
    """Run the interactive chat loop until the user quits."""
    record_store = RecordStoreClient()
    coordinator = TurnCoordinator(
        invoker=ReasoningInvoker(),
        registry=build_default_registry(),
        session_store=InMemorySessionStore(),
        send_reply=_print_reply,
        record_store=record_store,
    )
    logger.info("Started session for %s on business %s", user_id, business_id)

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, "You: ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue

            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye!")
                break

            if user_input.lower() == "new":
                user_id = f"cli-{uuid.uuid4().hex[:8]}"
                print(f"\n>> New session started for {user_id}\n")
                continue

            result = await coordinator.handle_message(business_id, user_id, user_input, privileged=admin)
            logger.debug(
                "intent=%s iterations=%d actions=%d",
                result.answer.metadata.intent, result.iterations, len(result.records),
            )
    finally:
        await record_store.aclose()


def main():
    """Parse arguments and run the CLI chat loop."""
    parser = argparse.ArgumentParser(description="Salon receptionist CLI")
    parser.add_argument("--debug", action="store_true", help="Show all log messages including HTTP requests")
    parser.add_argument("--business", default="default", help="Business ID to chat with")
    parser.add_argument("--user", default=None, help="Customer ID (phone number); random when omitted")
    parser.add_argument("--admin", action="store_true", help="Offer the admin tools")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Salon Receptionist - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new session.")
    print("=" * 60 + "\n")

    user_id = args.user or f"cli-{uuid.uuid4().hex[:8]}"
    asyncio.run(chat(args.business, user_id, args.admin))


if __name__ == "__main__":
    main()
