"""Finds fenced code blocks in message text."""

from typing import Iterable

from ait.conversation import Message


def find_fenced_code_snippets(lines: Iterable[str]) -> list[str]:
    """
    Collects the bodies of ``` fenced blocks from a sequence of lines.

    A fence may be indented and may carry a language tag. Indentation inside
    the block is preserved and an unterminated block is discarded.
    """
    snippets: list[str] = []
    in_code_block = False
    current: list[str] = []

    for line in lines:
        if line.lstrip().startswith("```"):
            if in_code_block:
                snippets.append("\n".join(current).rstrip("\n"))
                current = []
            in_code_block = not in_code_block
        elif in_code_block:
            current.append(line)

    return snippets


def snippets_from_messages(messages: Iterable[Message]) -> list[str]:
    """Every snippet in a transcript, in conversational order."""
    snippets: list[str] = []
    for message in messages:
        snippets.extend(find_fenced_code_snippets(message.text.split("\n")))
    return snippets
