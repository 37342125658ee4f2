"""Model backend: request building and the OpenAI-compatible event stream."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator

from openai import OpenAI

from ait.conversation import Message, Role
from ait.globals import retrieve_key

logger = logging.getLogger(__name__)

# Reasoning-family models reject a system prompt and a temperature override
REASONING_PREFIXES = ("o1", "o3")


class ModelFamily(Enum):
    STANDARD = "standard"
    REASONING = "reasoning"


def classify(model_id: str) -> ModelFamily:
    """The single place deciding which provider compatibility rules apply."""
    if model_id.startswith(REASONING_PREFIXES):
        return ModelFamily.REASONING
    return ModelFamily.STANDARD


def request_options(
    model_id: str, system_prompt: str | None, temperature: float | None
) -> tuple[str | None, float | None]:
    """Returns the (system_prompt, temperature) pair a model may receive."""
    if classify(model_id) is ModelFamily.REASONING:
        return None, None
    return system_prompt, temperature


def history_payload(messages: Iterable[Message]) -> list[dict]:
    """
    Converts a transcript into chat-completion messages.

    Error messages are view-only and are left out; the user messages around a
    failed turn are condensed into one entry so roles keep alternating.
    """
    payload: list[dict] = []
    for message in messages:
        if message.role is Role.ERROR:
            continue
        role = "user" if message.role is Role.USER else "assistant"
        if payload and payload[-1]["role"] == "user" and role == "user":
            payload[-1]["content"] += f"\n\n{message.text}"
        else:
            payload.append({"role": role, "content": message.text})
    return payload


def build_request(
    messages: Iterable[Message],
    model_id: str,
    system_prompt: str | None = None,
    temperature: float | None = None,
) -> dict:
    """Builds the keyword arguments for a chat-completion call."""
    system_prompt, temperature = request_options(model_id, system_prompt, temperature)
    chat_messages = history_payload(messages)
    if system_prompt is not None:
        chat_messages.insert(0, {"role": "system", "content": system_prompt})
    request: dict = {"model": model_id, "messages": chat_messages}
    if temperature is not None:
        request["temperature"] = temperature
    return request


class EventKind(Enum):
    START = "start"
    CHUNK = "chunk"
    REASONING_CHUNK = "reasoning_chunk"
    END = "end"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    kind: EventKind
    text: str = ""


def completed_events(text: str) -> list[StreamEvent]:
    """Wraps a single completed response in the streaming event protocol."""
    return [
        StreamEvent(EventKind.START),
        StreamEvent(EventKind.CHUNK, text),
        StreamEvent(EventKind.END),
    ]


class OpenAIBackend:
    """Talks to any OpenAI-compatible chat-completions endpoint."""

    # Chunks carry deltas, not the text accumulated so far
    cumulative = False

    def __init__(self, config):
        self.config = config
        self._clients: dict[str, OpenAI] = {}

    def client_for(self, model_id: str) -> OpenAI:
        """Returns a cached client for the endpoint serving `model_id`."""
        profile = self.config.profile_for(model_id) or self.config.active()
        endpoint = profile["endpoint"]
        if endpoint not in self._clients:
            self._clients[endpoint] = OpenAI(base_url=endpoint, api_key=retrieve_key())
        return self._clients[endpoint]

    def reset_clients(self):
        """Forget cached clients, e.g. after the API key changed."""
        self._clients.clear()

    def open_stream(self, request: dict) -> Iterator[StreamEvent]:
        """
        Issues a streaming request and returns its events.

        The request is sent before this returns, so connection and
        authentication failures raise here rather than mid-stream.
        """
        client = self.client_for(request["model"])
        completion = client.chat.completions.create(**request, stream=True)
        return self._events(completion)

    def _events(self, completion) -> Iterator[StreamEvent]:
        yield StreamEvent(EventKind.START)
        for chunk in completion:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            reasoning = getattr(delta, "reasoning_content", None) or ""
            if reasoning:
                yield StreamEvent(EventKind.REASONING_CHUNK, reasoning)
            content = getattr(delta, "content", None) or ""
            if content:
                yield StreamEvent(EventKind.CHUNK, content)
        yield StreamEvent(EventKind.END)

    def complete(self, request: dict) -> str:
        """Issues a non-streaming request and returns the answer text."""
        client = self.client_for(request["model"])
        response = client.chat.completions.create(**request)
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    def list_models(self) -> list[str]:
        """Model identifiers advertised by the active endpoint."""
        client = self.client_for(self.config.model_name)
        models = sorted(m.id for m in client.models.list())
        logger.info(f"Discovered {len(models)} models at {self.config.endpoint}")
        return models
