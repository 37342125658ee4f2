"""Request building, model classification and the OpenAI event adapter."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from ait.backend import (
    EventKind,
    ModelFamily,
    OpenAIBackend,
    StreamEvent,
    build_request,
    classify,
    history_payload,
)
from ait.conversation import Message


def openai_chunk(content=None, reasoning=None):
    delta = SimpleNamespace(content=content, reasoning_content=reasoning)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)])


def test_classify_reasoning_prefixes():
    assert classify("o1") is ModelFamily.REASONING
    assert classify("o1-mini") is ModelFamily.REASONING
    assert classify("o3-mini") is ModelFamily.REASONING
    assert classify("gpt-4o-mini") is ModelFamily.STANDARD
    assert classify("gemma:2b") is ModelFamily.STANDARD
    assert classify("claude-3-haiku-20240307") is ModelFamily.STANDARD


def test_reasoning_model_gets_no_system_prompt_or_temperature():
    request = build_request([Message.user("hi")], "o3-mini", "be nice", 0.2)
    assert "temperature" not in request
    assert all(m["role"] != "system" for m in request["messages"])
    assert request == {
        "model": "o3-mini",
        "messages": [{"role": "user", "content": "hi"}],
    }


def test_standard_model_gets_system_prompt_and_temperature():
    request = build_request([Message.user("hi")], "gpt-4o", "be nice", 0.2)
    assert request["temperature"] == 0.2
    assert request["messages"][0] == {"role": "system", "content": "be nice"}
    assert request["messages"][1] == {"role": "user", "content": "hi"}


def test_history_payload_drops_errors_and_merges_prompts():
    payload = history_payload(
        [
            Message.user("first"),
            Message.error("API Error: down"),
            Message.user("second"),
            Message.assistant("answer"),
        ]
    )
    assert payload == [
        {"role": "user", "content": "first\n\nsecond"},
        {"role": "assistant", "content": "answer"},
    ]


def test_events_from_openai_chunks(config):
    backend = OpenAIBackend(config)
    chunks = [
        openai_chunk(reasoning="hmm"),
        SimpleNamespace(choices=[]),
        openai_chunk(content="Hi"),
        openai_chunk(content=None),
    ]
    events = list(backend._events(iter(chunks)))
    assert events == [
        StreamEvent(EventKind.START),
        StreamEvent(EventKind.REASONING_CHUNK, "hmm"),
        StreamEvent(EventKind.CHUNK, "Hi"),
        StreamEvent(EventKind.END),
    ]


@patch("ait.backend.retrieve_key", return_value="fake-api-key")
@patch("ait.backend.OpenAI")
def test_open_stream_uses_profile_endpoint(mock_openai, mock_key, config):
    client = MagicMock()
    client.chat.completions.create.return_value = iter([openai_chunk(content="ok")])
    mock_openai.return_value = client

    backend = OpenAIBackend(config)
    events = list(backend.open_stream({"model": "gemma:2b", "messages": []}))

    mock_openai.assert_called_once_with(
        base_url="http://localhost:11434/v1", api_key="fake-api-key"
    )
    client.chat.completions.create.assert_called_once_with(
        model="gemma:2b", messages=[], stream=True
    )
    assert [e.kind for e in events] == [EventKind.START, EventKind.CHUNK, EventKind.END]


@patch("ait.backend.retrieve_key", return_value="fake-api-key")
@patch("ait.backend.OpenAI")
def test_clients_are_cached_per_endpoint(mock_openai, mock_key, config):
    backend = OpenAIBackend(config)
    backend.client_for("gpt-4o")
    backend.client_for("gpt-4o-mini")
    assert mock_openai.call_count == 1
    backend.reset_clients()
    backend.client_for("gpt-4o")
    assert mock_openai.call_count == 2


@patch("ait.backend.retrieve_key", return_value="fake-api-key")
@patch("ait.backend.OpenAI")
def test_complete_and_list_models(mock_openai, mock_key, config):
    client = MagicMock()
    message = SimpleNamespace(content="full answer")
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=message)]
    )
    client.models.list.return_value = [
        SimpleNamespace(id="gpt-4o"),
        SimpleNamespace(id="gpt-4.1"),
    ]
    mock_openai.return_value = client

    backend = OpenAIBackend(config)
    assert backend.complete({"model": "gpt-4o", "messages": []}) == "full answer"
    assert backend.list_models() == ["gpt-4.1", "gpt-4o"]
