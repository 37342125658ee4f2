#!/usr/bin/env python3

# <~~~>
#  AIT
# <~~~>

import sys
import time

import pyperclip
from rich.live import Live

from ait.backend import OpenAIBackend
from ait.cli_controller import CLIController
from ait.config import Config
from ait.conversation import Role
from ait.globals import (
    CONSOLE,
    DB_FILE,
    init_logger,
    log_exception,
    root_prompt,
    setup_keyring_backend,
    spinner_constructor,
)
from ait.session import AppMode, Command, NotificationKind, SessionEngine
from ait.storage import ChatStore, StorageError, write_chat_log
from ait.ui import GlobalPanels, UIConstructor


def spawn_error_panel(error: str, exception: str):
    CONSOLE.print(UIConstructor.error_panel_constructor(error, exception))
    CONSOLE.print()


class Chat:
    """Prompt loop and live streaming display around a SessionEngine."""

    def __init__(self, config: Config, engine: SessionEngine):
        self.config = config
        self.engine = engine
        self.ui = UIConstructor(config, engine)
        self.panel = GlobalPanels(engine, config, self.ui)
        self.controller = CLIController(config, engine, self.panel, self.ui)

    def show_notification(self):
        """Prints and dismisses a pending notification."""
        if self.engine.mode is not AppMode.NOTIFY:
            return
        note = self.engine.notification
        if note is not None:
            if note.kind is NotificationKind.ERROR:
                self.panel.spawn_error_panel("ERROR", note.message)
            else:
                CONSOLE.print(f"[cyan]{note.message}[/cyan]\n")
        self.engine.handle(Command.DISMISS)

    # <~~STREAMING~~>
    def stream_response(self):
        """
        Renders the outstanding turn until it reaches a terminal state.

        The engine's channel is drained once per frame. Ctrl+C is only taken
        while waiting between frames, so an action is never half-applied.
        """
        frame = 1 / max(self.config.refresh_rate, 4)
        live = Live(
            self.ui.pending_renderable(),
            console=CONSOLE,
            refresh_per_second=self.config.refresh_rate,
            transient=True,
        )
        with live:
            while self.engine.awaiting_response:
                if self.engine.tick():
                    live.update(self.ui.pending_renderable())
                try:
                    time.sleep(frame)
                except KeyboardInterrupt:
                    # Keep anything that already arrived, then stop the turn
                    self.engine.tick()
                    self.engine.cancel_turn()

        last = self.engine.conversation.messages[-1]
        if last.role is not Role.USER:
            self.panel.spawn_message_panel(last)
        if self.engine.mode is AppMode.NOTIFY:
            self.show_notification()
        else:
            CONSOLE.print()
            self.panel.spawn_status_panel()

    def refusal_hint(self) -> str:
        """Explains why a prompt was not accepted."""
        conversation = self.engine.conversation
        if self.engine.pending is None and not conversation.ready_for_input():
            # e.g. a loaded chat whose last prompt never got an answer
            return (
                "The last prompt in this chat was never answered. "
                "Use [cyan]!r[/cyan] to edit and resend it."
            )
        return "The previous prompt is still unanswered."

    # <~~RUN~~>
    def run(self):
        """Helper function for running the application"""
        self.panel.spawn_intro_panel()
        while self.engine.running:
            self.show_notification()
            self.engine.handle(Command.EDIT)
            try:
                user_input = root_prompt(default=self.engine.draft)
            except (KeyboardInterrupt, EOFError):
                self.engine.handle(Command.DISMISS)
                self.controller.quit()
                break
            stripped = user_input.strip()
            if not stripped:
                continue
            if stripped.startswith("!"):
                self.engine.handle(Command.DISMISS)
                if not self.controller.handle_input(stripped):
                    CONSOLE.print(f"[dim]Unknown command:[/dim] {stripped}\n")
                continue
            self.engine.handle(Command.SUBMIT, stripped)
            if not self.engine.awaiting_response:
                CONSOLE.print(f"[dim]{self.refusal_hint()}[/dim]\n")
                continue
            self.panel.spawn_user_panel(stripped)
            self.show_notification()
            self.stream_response()


# <~~MAIN FLOW~~>
def main():
    try:
        # Start a spinner, mostly for cold starts
        with Live(
            spinner_constructor("Launching Ait..."),
            refresh_per_second=8,
            console=CONSOLE,
        ):
            init_logger()  # Initialize the log file
            setup_keyring_backend()
            config = Config()
            config.load()  # Loads config variables from file
            store = ChatStore(DB_FILE)
            backend = OpenAIBackend(config)
            engine = SessionEngine(
                config,
                store,
                backend,
                chat_log=write_chat_log,
                clipboard=pyperclip.copy,
            )
            try:
                store.create_db()
            except StorageError as e:
                # Chats still work, they are just not saved
                log_exception(e, "Error creating the chat database")
                engine.notify(NotificationKind.ERROR, f"{e}\nChats will not be saved.")
            chat = Chat(config, engine)
        CONSOLE.clear()  # Clears the viewport
        chat.run()  # Runs the application
        config.save()  # Saves config on exit
    except (KeyboardInterrupt, EOFError):
        CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")
    except Exception as e:
        log_exception(e, "Critical startup error")  # Log any critical errors
        spawn_error_panel("CRITICAL ERROR", f"{e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
