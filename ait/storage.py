"""Conversation and message persistence (sqlite)."""

import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from ait.conversation import Message, Role
from ait.globals import CHAT_LOG_FILE

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Any failure reading or writing the chat database."""


@dataclass(frozen=True)
class ChatRecord:
    conversation_id: int
    system_prompt: str
    started_at: str


class ChatStore:
    """
    Durable log of conversations and their messages.

    A connection is opened for each operation, so no transaction ever spans
    more than one call.
    """

    def __init__(self, path: str):
        self.path = path

    @contextmanager
    def _connect(self, action: str) -> Iterator[sqlite3.Connection]:
        conn = None
        try:
            conn = sqlite3.connect(self.path)
            conn.execute("PRAGMA foreign_keys = ON")
            with conn:
                yield conn
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to {action}: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    def create_db(self):
        """Creates the database file and tables if they do not exist yet."""
        directory = os.path.dirname(self.path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Could not create database directory: {e}") from e
        with self._connect("create tables") as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS Conversations (
                    conversation_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    system_prompt TEXT NOT NULL,
                    started_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS Messages (
                    message_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation_id INTEGER,
                    sender TEXT CHECK(sender IN ('human', 'assistant', 'error')),
                    message_text TEXT NOT NULL,
                    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY(conversation_id) REFERENCES Conversations(conversation_id)
                );

                CREATE INDEX IF NOT EXISTS idx_messages_conversation
                ON Messages(conversation_id, message_id);
                """
            )

    def create_conversation(self, system_prompt: str) -> int:
        with self._connect("create conversation") as conn:
            cur = conn.execute(
                "INSERT INTO Conversations (system_prompt) VALUES (?)",
                (system_prompt,),
            )
            conversation_id = int(cur.lastrowid)
        logger.info(f"Created conversation {conversation_id}")
        return conversation_id

    def append_message(self, conversation_id: int, message: Message) -> int:
        """Stores one message and records its row id on it."""
        with self._connect("insert message") as conn:
            cur = conn.execute(
                "INSERT INTO Messages (conversation_id, sender, message_text) "
                "VALUES (?, ?, ?)",
                (conversation_id, message.role.value, message.text),
            )
            message.row_id = int(cur.lastrowid)
        return message.row_id

    def delete_message(self, conversation_id: int, message: Message) -> bool:
        """
        Removes at most one row for `message`.

        The row id is used when known. Otherwise the most recent row with the
        same role and text is removed.
        """
        with self._connect("delete message") as conn:
            if message.row_id is not None:
                cur = conn.execute(
                    "DELETE FROM Messages WHERE message_id = ? AND conversation_id = ?",
                    (message.row_id, conversation_id),
                )
            else:
                cur = conn.execute(
                    """
                    DELETE FROM Messages WHERE message_id = (
                        SELECT message_id FROM Messages
                        WHERE conversation_id = ? AND sender = ? AND message_text = ?
                        ORDER BY message_id DESC LIMIT 1
                    )
                    """,
                    (conversation_id, message.role.value, message.text),
                )
            deleted = cur.rowcount > 0
        if deleted:
            message.row_id = None
        return deleted

    def delete_conversation(self, conversation_id: int):
        """Removes the messages first, then the conversation record."""
        with self._connect("delete messages") as conn:
            conn.execute(
                "DELETE FROM Messages WHERE conversation_id = ?", (conversation_id,)
            )
        with self._connect("delete conversation") as conn:
            conn.execute(
                "DELETE FROM Conversations WHERE conversation_id = ?",
                (conversation_id,),
            )
        logger.info(f"Deleted conversation {conversation_id}")

    def list_conversations(self, query_filter: str | None = None) -> list[ChatRecord]:
        """Conversations, newest first; optionally only those mentioning `query_filter`."""
        with self._connect("list conversations") as conn:
            if query_filter:
                rows = conn.execute(
                    """
                    SELECT DISTINCT c.conversation_id, c.system_prompt, c.started_at
                    FROM Conversations c
                    JOIN Messages m ON c.conversation_id = m.conversation_id
                    WHERE m.message_text LIKE ?
                    ORDER BY c.conversation_id DESC
                    """,
                    (f"%{query_filter}%",),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT conversation_id, system_prompt, started_at "
                    "FROM Conversations ORDER BY conversation_id DESC"
                ).fetchall()
        return [ChatRecord(int(r[0]), r[1], str(r[2])) for r in rows]

    def list_messages(self, conversation_id: int) -> list[Message]:
        with self._connect("list messages") as conn:
            rows = conn.execute(
                "SELECT message_id, sender, message_text FROM Messages "
                "WHERE conversation_id = ? ORDER BY message_id",
                (conversation_id,),
            ).fetchall()
        return [self._to_message(*row) for row in rows]

    @staticmethod
    def _to_message(row_id: int, sender: str, text: str) -> Message:
        try:
            role = Role(sender)
        except ValueError:
            return Message(Role.ERROR, "Unknown sender type", row_id)
        return Message(role, text, row_id)


def write_chat_log(messages: list[Message], path: str = CHAT_LOG_FILE):
    """Rewrites the plain-text transcript of the active conversation."""
    lines = [f"{m.role.label}: {m.text}\n" for m in messages]
    with open(path, "w", encoding="utf-8") as f:
        f.writelines(lines)
