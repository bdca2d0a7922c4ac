"""Command-line entry point for DocQA."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from docqa.config import config
from docqa.engine import DocQAEngine
from docqa.errors import DocQAError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from logging import Logger


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        description="Upload PDF or CSV documents and ask questions about them.",
    )
    parser.add_argument(
        "--database",
        type=Path,
        default=None,
        help="Path to the sqlite database (default: DATABASE_PATH).",
    )
    parser.add_argument(
        "--storage-dir",
        type=Path,
        default=None,
        help="Directory for uploaded files (default: STORAGE_DIR).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("new-conversation", help="Create a conversation.")
    commands.add_parser("conversations", help="List conversations.")

    upload = commands.add_parser("upload", help="Upload and ingest a document.")
    upload.add_argument("conversation_id")
    upload.add_argument("path", type=Path)
    upload.add_argument("--content-type", default=None)

    status = commands.add_parser("status", help="Show a document's status.")
    status.add_argument("document_id")
    status.add_argument(
        "--verbose",
        action="store_true",
        help="Include attempts and failure reason.",
    )

    documents = commands.add_parser("documents", help="List conversation documents.")
    documents.add_argument("conversation_id")

    chat = commands.add_parser("chat", help="Ask a question.")
    chat.add_argument("conversation_id")
    chat.add_argument("message")

    messages = commands.add_parser("messages", help="Show the message log.")
    messages.add_argument("conversation_id")

    fail = commands.add_parser("fail-document", help="Force a stuck document to failed.")
    fail.add_argument("document_id")

    delete_document = commands.add_parser("delete-document", help="Soft-delete a document.")
    delete_document.add_argument("document_id")

    delete_conversation = commands.add_parser(
        "delete-conversation", help="Soft-delete a conversation."
    )
    delete_conversation.add_argument("conversation_id")

    recover = commands.add_parser("recover", help="Re-run abandoned processing.")
    recover.add_argument(
        "--stale-seconds",
        type=float,
        default=None,
        help="Lock age after which a run counts as abandoned.",
    )
    return parser.parse_args(argv)


def emit(payload: Any) -> None:  # noqa: ANN401
    print(json.dumps(payload, indent=2))  # noqa: T201


async def run_command(engine: DocQAEngine, args: argparse.Namespace) -> Any:  # noqa: ANN401, C901, PLR0911
    """Execute one CLI command and return its JSON-serializable result."""  # noqa: DOC201
    documents = engine.documents
    conversations = engine.conversations

    match args.command:
        case "new-conversation":
            conversation = await conversations.create_conversation()
            return {"id": conversation.id, "created_at": conversation.created_at}
        case "conversations":
            return [
                {"id": c.id, "created_at": c.created_at}
                for c in await conversations.list_conversations()
            ]
        case "upload":
            data = await asyncio.to_thread(args.path.read_bytes)
            document = await documents.upload(
                args.conversation_id, args.path.name, data, args.content_type
            )
            await documents.wait_for_background_tasks()
            return (await documents.get_status(document.id)).to_status_dict()
        case "status":
            document = await documents.get_status(args.document_id)
            result = document.to_status_dict()
            if args.verbose:
                result["processing_attempts"] = document.processing_attempts
                result["error_reason"] = document.error_reason
            return result
        case "documents":
            return [
                document.to_status_dict()
                for document in await documents.list_documents(args.conversation_id)
            ]
        case "chat":
            answer = await conversations.chat(args.conversation_id, args.message)
            return {
                "answer": answer.text,
                "sources": [source.to_dict() for source in answer.sources],
            }
        case "messages":
            return [
                {
                    "role": message.role.value,
                    "content": message.content,
                    "created_at": message.created_at,
                }
                for message in await conversations.get_messages(args.conversation_id)
            ]
        case "fail-document":
            return (await documents.force_fail(args.document_id)).to_status_dict()
        case "delete-document":
            await documents.delete_document(args.document_id)
            return {"deleted": args.document_id}
        case "delete-conversation":
            await conversations.delete_conversation(args.conversation_id)
            return {"deleted": args.conversation_id}
        case "recover":
            rescheduled = await documents.recover_stuck(args.stale_seconds)
            await documents.wait_for_background_tasks()
            return {"rescheduled": rescheduled}
    msg = f"Unknown command: {args.command}"
    raise ValueError(msg)


def execute(args: argparse.Namespace, logger: Logger) -> int:
    engine = DocQAEngine(database_path=args.database, storage_dir=args.storage_dir)
    try:
        result = asyncio.run(run_command(engine, args))
    except KeyboardInterrupt:
        logger.info("DocQA stopped by user")
        return 0
    except DocQAError as exc:
        logger.error("%s", exc)  # noqa: TRY400
        return 1
    emit(result)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration and run one command."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()
    logger = config.get_logger(__name__)

    try:
        config.validate()
    except ValueError:
        logger.exception("Configuration invalid")
        return 1

    return execute(args, logger)


if __name__ == "__main__":
    sys.exit(main())
