"""
A 'mock and drive' test for the chat app.

- Patches the settings file, database and backend
- Starts the application, optionally sends one prompt, then exits
"""

import threading
from unittest.mock import MagicMock, patch

import pytest

from ait import chat
from ait.conversation import Message, Role
from ait.session import AppMode, SessionEngine
from ait.storage import ChatStore
from ait.streaming import CANCELLED_REASON

from conftest import FakeBackend, finish_turn


@pytest.fixture
def app_env(tmp_path):
    """Everything main() touches on disk or the network, redirected."""
    backend = FakeBackend()
    db_file = str(tmp_path / "chats.db")
    with patch("ait.config.CONFIG_FILE", str(tmp_path / "settings.json")), patch(
        "ait.chat.DB_FILE", db_file
    ), patch("ait.chat.OpenAIBackend", return_value=backend), patch(
        "ait.chat.setup_keyring_backend"
    ), patch(
        "ait.chat.write_chat_log"
    ), patch(
        "ait.ui.tiktoken", MagicMock()
    ):
        yield backend, db_file


@patch("ait.globals.prompt", return_value="!q")
def test_app_starts_and_quits(mock_prompt, app_env):
    chat.main()
    mock_prompt.assert_called_once()


@patch("ait.globals.prompt", side_effect=["hello", "!q"])
def test_app_sends_one_prompt(mock_prompt, app_env):
    backend, db_file = app_env
    chat.main()

    assert len(backend.requests) == 1
    (record,) = ChatStore(db_file).list_conversations()
    messages = ChatStore(db_file).list_messages(record.conversation_id)
    assert [(m.role, m.text) for m in messages] == [
        (Role.USER, "hello"),
        (Role.ASSISTANT, "Hello there"),
    ]


@patch("ait.globals.prompt", side_effect=EOFError)
def test_app_exits_on_eof(mock_prompt, app_env):
    chat.main()
    assert mock_prompt.call_count == 1


@patch("ait.chat.Config", side_effect=RuntimeError("settings unreadable"))
def test_startup_failure_shows_critical_panel(mock_config, app_env, capsys):
    with pytest.raises(SystemExit) as exc:
        chat.main()
    assert exc.value.code == 1
    out = capsys.readouterr().out
    assert "CRITICAL ERROR" in out
    assert "settings unreadable" in out


# Streaming view and prompt handling on a real engine


@pytest.fixture
def blocking_backend():
    """Backend whose stream only opens once `release` is set."""
    release = threading.Event()
    backend = FakeBackend(on_open=lambda request: release.wait(5))
    yield backend, release
    release.set()


def make_chat(engine):
    with patch("ait.ui.tiktoken", MagicMock()):
        return chat.Chat(engine.config, engine)


def test_ctrl_c_keeps_an_answer_that_already_arrived(
    config, store, blocking_backend
):
    backend, release = blocking_backend
    engine = SessionEngine(config, store, backend)
    app = make_chat(engine)
    engine.submit_text("hi")
    worker = engine.worker

    def interrupt(seconds):
        # The answer lands just before Ctrl+C is pressed
        release.set()
        worker.join(5)
        raise KeyboardInterrupt

    with patch("ait.chat.time") as mock_time:
        mock_time.sleep.side_effect = interrupt
        app.stream_response()

    assert not engine.awaiting_response
    assert [(m.role, m.text) for m in engine.conversation] == [
        (Role.USER, "hi"),
        (Role.ASSISTANT, "Hello there"),
    ]
    cid = engine.conversation.conversation_id
    assert [(m.role, m.text) for m in store.list_messages(cid)] == [
        (Role.USER, "hi"),
        (Role.ASSISTANT, "Hello there"),
    ]


def test_ctrl_c_cancels_and_saves_the_cancelled_turn(
    config, store, blocking_backend
):
    backend, _ = blocking_backend
    engine = SessionEngine(config, store, backend)
    app = make_chat(engine)
    engine.submit_text("hi")

    with patch("ait.chat.time") as mock_time:
        mock_time.sleep.side_effect = KeyboardInterrupt
        app.stream_response()

    assert not engine.awaiting_response
    cid = engine.conversation.conversation_id
    assert [(m.role, m.text) for m in store.list_messages(cid)] == [
        (Role.USER, "hi"),
        (Role.ERROR, CANCELLED_REASON),
    ]
    # The cancellation notice is shown and dismissed
    assert engine.mode is AppMode.NORMAL


def test_loaded_chat_with_unanswered_prompt_points_to_redo(
    config, store, backend
):
    cid = store.create_conversation("sys")
    store.append_message(cid, Message.user("lost in a crash"))
    engine = SessionEngine(config, store, backend)
    engine.load_chat(store.list_conversations()[0])
    app = make_chat(engine)

    assert not engine.submit_text("next")
    assert "!r" in app.refusal_hint()

    assert engine.redo_last_turn() == "lost in a crash"
    assert engine.submit_text("lost in a crash")
    finish_turn(engine)
    assert app.refusal_hint() == "The previous prompt is still unanswered."
