"""
Session engine: the UI-facing mode machine and the submit-and-stream cycle.

All conversation mutation happens here on the UI thread. Workers report back
through `self.channel`, which `tick()` drains in arrival order.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ait.backend import build_request
from ait.conversation import Conversation, Message, Role, StreamingTurn
from ait.globals import log_exception
from ait.selection import SelectionList
from ait.snippets import snippets_from_messages
from ait.storage import ChatRecord, StorageError
from ait.streaming import (
    CANCELLED_REASON,
    Action,
    StreamComplete,
    StreamError,
    StreamPartial,
    StreamStart,
    spawn_turn_worker,
)

logger = logging.getLogger(__name__)


class AppMode(Enum):
    NORMAL = "normal"
    EDITING = "editing"
    MODEL_SELECTION = "model_selection"
    SNIPPET_SELECTION = "snippet_selection"
    HISTORY_BROWSING = "history_browsing"
    HELP = "help"
    NOTIFY = "notify"


class Command(Enum):
    EDIT = "edit"
    SUBMIT = "submit"
    SELECT_MODEL = "select_model"
    SELECT_SNIPPET = "select_snippet"
    SHOW_HISTORY = "show_history"
    HELP = "help"
    DISMISS = "dismiss"
    CHOOSE = "choose"
    NEXT = "next"
    PREVIOUS = "previous"
    FIRST = "first"
    LAST = "last"
    NONE = "none"
    DELETE = "delete"
    REDO = "redo"
    NEW_CHAT = "new_chat"
    YANK = "yank"
    QUIT = "quit"


class NotificationKind(Enum):
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    message: str


# (mode, command) -> mode. Pairs not listed leave the mode unchanged.
TRANSITIONS: dict[tuple[AppMode, Command], AppMode] = {
    (AppMode.NORMAL, Command.EDIT): AppMode.EDITING,
    (AppMode.NORMAL, Command.SELECT_MODEL): AppMode.MODEL_SELECTION,
    (AppMode.NORMAL, Command.SELECT_SNIPPET): AppMode.SNIPPET_SELECTION,
    (AppMode.NORMAL, Command.SHOW_HISTORY): AppMode.HISTORY_BROWSING,
    (AppMode.NORMAL, Command.HELP): AppMode.HELP,
    (AppMode.NORMAL, Command.REDO): AppMode.EDITING,
    (AppMode.EDITING, Command.DISMISS): AppMode.NORMAL,
    (AppMode.EDITING, Command.SUBMIT): AppMode.NORMAL,
    (AppMode.MODEL_SELECTION, Command.DISMISS): AppMode.NORMAL,
    (AppMode.MODEL_SELECTION, Command.CHOOSE): AppMode.EDITING,
    (AppMode.SNIPPET_SELECTION, Command.DISMISS): AppMode.NORMAL,
    (AppMode.SNIPPET_SELECTION, Command.CHOOSE): AppMode.NORMAL,
    (AppMode.HISTORY_BROWSING, Command.DISMISS): AppMode.NORMAL,
    (AppMode.HISTORY_BROWSING, Command.CHOOSE): AppMode.NORMAL,
    (AppMode.HELP, Command.DISMISS): AppMode.NORMAL,
    (AppMode.NOTIFY, Command.DISMISS): AppMode.NORMAL,
}

NAVIGATION = {
    Command.NEXT: "select_next",
    Command.PREVIOUS: "select_previous",
    Command.FIRST: "select_first",
    Command.LAST: "select_last",
    Command.NONE: "select_none",
}


def transition(mode: AppMode, command: Command) -> AppMode:
    """Total mode transition function; unknown pairs are no-ops."""
    return TRANSITIONS.get((mode, command), mode)


class SessionEngine:
    """Owns the active conversation and everything that mutates it."""

    def __init__(
        self,
        config,
        store,
        backend,
        chat_log: Callable[[list[Message]], None] | None = None,
        clipboard: Callable[[str], None] | None = None,
    ):
        self.config = config
        self.store = store
        self.backend = backend
        self.chat_log = chat_log
        # Text sink owned by the UI layer, e.g. the system clipboard
        self.clipboard = clipboard
        self.mode: AppMode = AppMode.NORMAL
        self.notification: Notification | None = None
        self.running: bool = True
        self.conversation = Conversation(config.system_prompt)
        self.model: str = config.model_name
        self.model_list: SelectionList[str] = SelectionList()
        self.snippet_list: SelectionList[str] = SelectionList()
        self.chat_list: SelectionList[ChatRecord] = SelectionList()
        # Text handed back to the editor by redo
        self.draft: str = ""
        # Ordered MPSC channel from turn workers to the UI thread
        self.channel: queue.Queue[Action] = queue.Queue()
        self.worker: threading.Thread | None = None
        self.cancel_event: threading.Event | None = None
        self.set_models([m["name"] for m in config.models])

    # <~~STATE QUERIES~~>
    @property
    def awaiting_response(self) -> bool:
        return self.conversation.awaiting_response

    @property
    def pending(self) -> StreamingTurn | None:
        return self.conversation.pending

    # <~~MODE MACHINE~~>
    def set_mode(self, mode: AppMode):
        self.mode = mode

    def notify(self, kind: NotificationKind, message: str):
        """Raise a notification; unread errors are kept, not replaced."""
        note = self.notification
        if (
            self.mode is AppMode.NOTIFY
            and note is not None
            and note.kind is NotificationKind.ERROR
        ):
            kind = NotificationKind.ERROR
            if message not in note.message.split("\n"):
                message = f"{note.message}\n{message}"
            else:
                message = note.message
        self.notification = Notification(kind, message)
        self.set_mode(AppMode.NOTIFY)

    def handle(self, command: Command, text: str = "") -> AppMode:
        """Apply a UI command in the current mode and return the new mode."""
        mode = self.mode
        if command is Command.QUIT and mode is AppMode.NORMAL:
            self.running = False
            return self.mode
        if command in NAVIGATION:
            target = self._active_list()
            if target is not None:
                getattr(target, NAVIGATION[command])()
            return self.mode

        if mode is AppMode.NORMAL:
            if command is Command.SHOW_HISTORY:
                self.refresh_chat_list(text or None)
            elif command is Command.SELECT_SNIPPET:
                self.snippet_list.select_first()
            elif command is Command.REDO:
                if self.redo_last_turn() is None:
                    return self.mode
            elif command is Command.NEW_CHAT:
                self.new_chat()
            elif command is Command.YANK:
                self.yank_latest_assistant_message()
        elif mode is AppMode.EDITING and command is Command.SUBMIT:
            if not self.submit_text(text):
                return self.mode
        elif mode is AppMode.SNIPPET_SELECTION and command is Command.CHOOSE:
            if self.copy_selected_snippet() is None:
                return self.mode
        elif mode is AppMode.MODEL_SELECTION and command is Command.CHOOSE:
            model = self.model_list.current()
            if model is None:
                return self.mode
            self.select_model(model)
        elif mode is AppMode.HISTORY_BROWSING:
            if command is Command.CHOOSE:
                if not self.load_selected_chat():
                    return self.mode
            elif command is Command.DELETE:
                self.delete_selected_chat()
                return self.mode
        elif mode is AppMode.NOTIFY and command is Command.DISMISS:
            self.notification = None

        # Side effects may already have moved into NOTIFY
        if self.mode is mode:
            self.set_mode(transition(mode, command))
        return self.mode

    def _active_list(self) -> SelectionList | None:
        return {
            AppMode.MODEL_SELECTION: self.model_list,
            AppMode.SNIPPET_SELECTION: self.snippet_list,
            AppMode.HISTORY_BROWSING: self.chat_list,
        }.get(self.mode)

    # <~~SUBMIT & STREAM~~>
    def submit_text(self, text: str) -> bool:
        """
        Accept a user prompt, persist it, then start exactly one worker.

        Returns False (and changes nothing) when the prompt is empty or a turn
        is still outstanding.
        """
        message = self.conversation.submit_user_message(text)
        if message is None:
            return False
        self.draft = ""
        # Durability precedes the network call
        self._persist(message)
        self._write_chat_log()
        self._start_turn()
        return True

    def _start_turn(self):
        turn = self.conversation.begin_assistant_turn()
        request = build_request(
            self.conversation.messages,
            self.model,
            self.conversation.system_prompt,
            self.config.temperature,
        )
        self.cancel_event = threading.Event()
        self.worker = spawn_turn_worker(
            self.backend,
            request,
            turn.id,
            self.channel,
            cancel=self.cancel_event,
            streaming=self.config.stream_responses,
        )

    def tick(self) -> int:
        """Drain the channel, applying every queued action in order."""
        applied = 0
        while True:
            try:
                action = self.channel.get_nowait()
            except queue.Empty:
                break
            self.apply_action(action)
            applied += 1
        return applied

    def apply_action(self, action: Action):
        turn = self.conversation.pending
        if turn is None or action.turn_id != turn.id:
            logger.debug(f"Discarding stale {type(action).__name__}")
            return
        if isinstance(action, StreamStart):
            turn.start()
        elif isinstance(action, StreamPartial):
            self.conversation.apply_partial(turn, action.text)
        elif isinstance(action, StreamComplete):
            message = self.conversation.finalize_turn(turn, text=action.text)
            self._finish_turn(message)
        elif isinstance(action, StreamError):
            message = self.conversation.finalize_turn(turn, error=action.reason)
            self.notify(NotificationKind.ERROR, action.reason)
            self._finish_turn(message)

    def _finish_turn(self, message: Message | None):
        self.worker = None
        self.cancel_event = None
        if message is None:
            return
        self._persist(message)
        self._write_chat_log()
        self.refresh_snippets()

    def cancel_turn(self) -> bool:
        """
        Stop the outstanding turn now and fail it as cancelled.

        The worker sees the token at its next suspension point; anything it
        still reports afterwards is stale and discarded.
        """
        turn = self.conversation.pending
        if turn is None:
            return False
        if self.cancel_event is not None:
            self.cancel_event.set()
        self.apply_action(StreamError(turn.id, CANCELLED_REASON))
        return True

    def _abandon_turn(self):
        if self.cancel_event is not None:
            self.cancel_event.set()
        self.conversation.abandon_turn()
        self.worker = None
        self.cancel_event = None

    # <~~PERSISTENCE~~>
    def _persist(self, message: Message):
        """Write one terminal message; failures notify but never roll back."""
        try:
            if self.conversation.conversation_id is None:
                self.conversation.conversation_id = self.store.create_conversation(
                    self.conversation.system_prompt
                )
            self.store.append_message(self.conversation.conversation_id, message)
        except StorageError as e:
            log_exception(e, "Error in _persist()")
            self.notify(NotificationKind.ERROR, f"Storage error: {e}")

    def _write_chat_log(self):
        if self.chat_log is None:
            return
        try:
            self.chat_log(self.conversation.messages)
        except OSError as e:
            log_exception(e, "Error writing chat log")

    # <~~REDO~~>
    def redo_last_turn(self) -> str | None:
        """Undo the last turn and hand its prompt back for editing."""
        rollback = self.conversation.redo_last_user_turn()
        if rollback is None:
            return None
        conversation_id = self.conversation.conversation_id
        if conversation_id is not None:
            for message in rollback.removed:
                try:
                    self.store.delete_message(conversation_id, message)
                except StorageError as e:
                    # In-memory state stays authoritative for this session
                    log_exception(e, "Error in redo_last_turn()")
        self.draft = rollback.text
        self.refresh_snippets()
        return rollback.text

    # <~~MODELS~~>
    def set_models(self, models: list[str]):
        unique = list(dict.fromkeys(models))
        if self.model not in unique:
            unique.insert(0, self.model)
        self.model_list.replace(unique)
        self.model_list.chosen = unique.index(self.model)
        self.model_list.select(self.model_list.chosen)

    def refresh_models(self) -> bool:
        """Replace the model list with the backend's, keeping it on failure."""
        try:
            discovered = self.backend.list_models()
        except Exception as e:
            log_exception(e, "Error in refresh_models()")
            return False
        if not discovered:
            return False
        self.set_models([m["name"] for m in self.config.models] + discovered)
        return True

    def select_model(self, model_id: str):
        """Targets later turns at `model_id`; history is untouched."""
        self.model = model_id
        if model_id not in self.model_list.items:
            self.model_list.items.append(model_id)
        self.model_list.select(self.model_list.items.index(model_id))
        self.model_list.choose()

    # <~~SNIPPETS & CLIPBOARD~~>
    def refresh_snippets(self):
        self.snippet_list.replace(snippets_from_messages(self.conversation.messages))

    def _copy(self, text: str, sink: Callable[[str], None] | None) -> bool:
        sink = sink or self.clipboard
        if sink is None:
            return False
        try:
            sink(text)
        except Exception as e:
            log_exception(e, "Error copying to clipboard")
            self.notify(NotificationKind.ERROR, f"Could not copy to clipboard: {e}")
            return False
        return True

    def copy_selected_snippet(
        self, sink: Callable[[str], None] | None = None
    ) -> str | None:
        snippet = self.snippet_list.current()
        if snippet is None or not self._copy(snippet, sink):
            return None
        self.snippet_list.choose()
        return snippet

    def yank_latest_assistant_message(
        self, sink: Callable[[str], None] | None = None
    ) -> str | None:
        message = self.conversation.last_assistant_message()
        if message is None or not self._copy(message.text, sink):
            return None
        return message.text

    # <~~CHAT HISTORY~~>
    def new_chat(self):
        self._abandon_turn()
        self.conversation = Conversation(self.config.system_prompt)
        self.draft = ""
        self.refresh_snippets()

    def refresh_chat_list(self, query_filter: str | None = None) -> bool:
        try:
            chats = self.store.list_conversations(query_filter)
        except StorageError as e:
            log_exception(e, "Error in refresh_chat_list()")
            self.notify(NotificationKind.ERROR, f"Storage error: {e}")
            return False
        self.chat_list.replace(chats)
        return True

    def load_chat(self, record: ChatRecord) -> bool:
        try:
            messages = self.store.list_messages(record.conversation_id)
        except StorageError as e:
            log_exception(e, "Error in load_chat()")
            self.notify(NotificationKind.ERROR, f"Storage error: {e}")
            return False
        self._abandon_turn()
        self.conversation = Conversation(
            record.system_prompt, record.conversation_id, messages
        )
        self.draft = ""
        self.refresh_snippets()
        return True

    def load_selected_chat(self) -> bool:
        record = self.chat_list.current()
        if record is None:
            return False
        if not self.load_chat(record):
            return False
        self.chat_list.choose()
        return True

    def delete_selected_chat(self) -> bool:
        record = self.chat_list.current()
        if record is None:
            return False
        try:
            self.store.delete_conversation(record.conversation_id)
        except StorageError as e:
            log_exception(e, "Error in delete_selected_chat()")
            self.notify(NotificationKind.ERROR, f"Storage error: {e}")
            return False
        self.chat_list.remove_selected()
        if self.conversation.conversation_id == record.conversation_id:
            self.new_chat()
        return True

    def turn_number(self) -> int:
        return self.conversation.count(Role.USER)
