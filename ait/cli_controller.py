"""Command interactivity logic lives here."""

from keyring import set_password
from keyring.errors import KeyringError
from prompt_toolkit import prompt
from prompt_toolkit.formatted_text import HTML

from ait.globals import CONSOLE, KEYRING_SERVICE, USER_NAME
from ait.session import AppMode, Command


class CLIController:
    """Handles and supports all command input"""

    def __init__(self, config, engine, panel, ui):
        self.config = config
        self.engine = engine
        self.panel = panel
        self.ui = ui

        # Command dict
        self.commands = {
            "!h": self.spawn_help_chart,
            "!help": self.spawn_help_chart,
            "!m": self.select_model,
            "!model": self.select_model,
            "!s": self.select_snippet,
            "!snippets": self.select_snippet,
            "!hist": self.browse_history,
            "!history": self.browse_history,
            "!r": self.redo_last_turn,
            "!redo": self.redo_last_turn,
            "!n": self.new_chat,
            "!new": self.new_chat,
            "!y": self.yank_response,
            "!yank": self.yank_response,
            "!config": self.spawn_settings_chart,
            "!clear": CONSOLE.clear,
            "!prompt": self.set_system_prompt,
            "!temp": self.set_temperature,
            "!rate": self.set_refresh_rate,
            "!theme": self.set_code_theme,
            "!key": self.set_api_key,
            "!q": self.quit,
            "!quit": self.quit,
        }

    # <~~HELPERS~~>
    def _prompt_wrapper(
        self, prefix, cancel_msg="Canceled.", allow_empty=False, **kwargs
    ) -> str | None:
        """Prompt_toolkit wrapper for validating input."""
        try:
            # **kwargs passes completers, styles, history, etc automatically
            user_input = prompt(prefix, **kwargs)
            stripped = user_input.strip()
            if not stripped and not allow_empty:
                CONSOLE.print("[dim]No input detected.[/dim]\n")
                return None
            return stripped
        except (KeyboardInterrupt, EOFError):
            CONSOLE.print(f"[dim]{cancel_msg}[/dim]\n")
            return None

    def _pick_index(self, count: int, label: str) -> int | None:
        """Prompts for a 1-based entry number and returns a 0-based index."""
        choice = self._prompt_wrapper(
            HTML(f"Enter a {label} number<seagreen>:</seagreen> ")
        )
        if not choice:
            return None
        try:
            value = int(choice)
        except ValueError:
            CONSOLE.print("[dim]Only valid entry numbers are acceptable.[/dim]\n")
            return None
        if not 1 <= value <= count:
            CONSOLE.print(f"[red]Entry {value} does not exist.[/red]\n")
            return None
        return value - 1

    def _leave(self, mode: AppMode):
        """Return to Normal if a picker is still open."""
        if self.engine.mode is mode:
            self.engine.handle(Command.DISMISS)

    def handle_input(self, user_input: str) -> bool:
        """Parse user input for a command & handle it"""
        cmd, _, argument = user_input.partition(" ")
        cmd = cmd.lower()
        if cmd not in self.commands:
            return False  # No command detected
        if cmd in ("!hist", "!history"):
            self.browse_history(argument.strip())
        else:
            self.commands[cmd]()
        return True

    # <~~CHARTS~~>
    def spawn_help_chart(self):
        """Markdown usage chart."""
        self.engine.handle(Command.HELP)
        CONSOLE.print(self.ui.help_chart_constructor())
        CONSOLE.print()
        self._leave(AppMode.HELP)

    def spawn_settings_chart(self):
        """Markdown settings chart."""
        CONSOLE.print(self.ui.settings_chart_constructor())
        CONSOLE.print()

    # <~~CONVERSATION~~>
    def select_model(self):
        """Pick the model used for subsequent turns."""
        # Falls back to the configured profiles when discovery fails
        self.engine.refresh_models()
        self.engine.handle(Command.SELECT_MODEL)
        self.panel.spawn_list_panel("🤖 Models", self.engine.model_list)
        index = self._pick_index(len(self.engine.model_list), "model")
        if index is None:
            self._leave(AppMode.MODEL_SELECTION)
            return
        self.engine.model_list.select(index)
        self.engine.handle(Command.CHOOSE)
        profile = self.config.profile_for(self.engine.model)
        if profile:
            self.config.active_model = profile["alias"]
            self.config.save()
        CONSOLE.print(f"[green]Switched to:[/green] {self.engine.model}\n")

    def select_snippet(self):
        """Pick a code block from the transcript and copy it."""
        self.engine.handle(Command.SELECT_SNIPPET)
        snippets = self.engine.snippet_list
        if not snippets.items:
            CONSOLE.print("[dim]No code blocks found in this chat.[/dim]\n")
            self._leave(AppMode.SNIPPET_SELECTION)
            return
        self.panel.spawn_list_panel(
            "✂️ Snippets", snippets, label=lambda s: s.splitlines()[0] if s else ""
        )
        index = self._pick_index(len(snippets), "snippet")
        if index is None:
            self._leave(AppMode.SNIPPET_SELECTION)
            return
        snippets.select(index)
        self.engine.handle(Command.CHOOSE)
        if self.engine.mode is AppMode.NORMAL:
            self.panel.spawn_copy_panel(snippets.current())
        self._leave(AppMode.SNIPPET_SELECTION)

    def browse_history(self, query_filter: str = ""):
        """Lists saved chats, then loads or deletes one."""
        self.engine.handle(Command.SHOW_HISTORY, query_filter)
        if self.engine.mode is not AppMode.HISTORY_BROWSING:
            return
        chats = self.engine.chat_list
        self.panel.spawn_list_panel(
            "📜 Chats",
            chats,
            label=lambda c: f"Chat #{c.conversation_id}  ({c.started_at})",
        )
        if not chats.items:
            self._leave(AppMode.HISTORY_BROWSING)
            return
        CONSOLE.print("[dim]Prefix the number with [cyan]d[/cyan] to delete.[/dim]")
        choice = self._prompt_wrapper(HTML("Enter a chat number<seagreen>:</seagreen> "))
        if not choice:
            self._leave(AppMode.HISTORY_BROWSING)
            return
        delete = choice.lower().startswith("d")
        try:
            value = int(choice[1:] if delete else choice)
        except ValueError:
            CONSOLE.print("[dim]Only valid entry numbers are acceptable.[/dim]\n")
            self._leave(AppMode.HISTORY_BROWSING)
            return
        if not 1 <= value <= len(chats):
            CONSOLE.print(f"[red]Entry {value} does not exist.[/red]\n")
            self._leave(AppMode.HISTORY_BROWSING)
            return
        chats.select(value - 1)
        record = chats.current()
        if delete:
            self.engine.handle(Command.DELETE)
            if self.engine.mode is AppMode.HISTORY_BROWSING:
                CONSOLE.print(
                    f"[green]Chat deleted:[/green] #{record.conversation_id}\n"
                )
            self._leave(AppMode.HISTORY_BROWSING)
            return
        self.engine.handle(Command.CHOOSE)
        if self.engine.mode is AppMode.NORMAL:
            self.panel.render_history()
            CONSOLE.print(f"[green]Chat loaded:[/green] #{record.conversation_id}\n")

    def redo_last_turn(self):
        """Removes the last turn and re-opens its prompt for editing."""
        self.engine.handle(Command.REDO)
        if self.engine.mode is not AppMode.EDITING:
            CONSOLE.print("[dim]Nothing to redo.[/dim]\n")
            return
        self.panel.render_history()
        CONSOLE.print("[dim]Your last prompt is back in the editor.[/dim]")

    def new_chat(self):
        self.engine.handle(Command.NEW_CHAT)
        CONSOLE.clear()
        self.panel.spawn_intro_panel()
        CONSOLE.print("[green]Started a new chat.[/green]\n")

    def yank_response(self):
        """Copies the latest assistant response."""
        text = self.engine.yank_latest_assistant_message()
        if text is None:
            if self.engine.mode is not AppMode.NOTIFY:
                CONSOLE.print("[dim]No assistant response found to copy.[/dim]\n")
            return
        self.panel.spawn_copy_panel(text)

    def quit(self):
        self.engine.handle(Command.QUIT)
        CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")

    # <~~MAIN CONFIG~~>
    def set_system_prompt(self):
        """Sets a new persistent system prompt within the config file."""
        sysprompt = (
            self._prompt_wrapper(
                HTML("Enter a system prompt<seagreen>:</seagreen> "),
                allow_empty=True,
            )
            or ""
        )
        self.config.system_prompt = sysprompt
        self.config.save()
        CONSOLE.print(f"[green]System prompt updated to:[/green] {sysprompt}")
        CONSOLE.print(
            "[dim]Use [cyan]!new[/cyan] to start a chat with the new prompt.[/dim]"
        )
        CONSOLE.print()

    def set_temperature(self):
        """Sets a new persistent temperature"""
        temp = self._prompt_wrapper(HTML("Enter a temperature<seagreen>:</seagreen> "))
        if not temp:
            return
        try:
            value = float(temp)
            if not 0 <= value <= 2:
                raise ValueError
        except ValueError:
            self.panel.spawn_error_panel(
                "VALUE ERROR", "Please enter a number between 0 and 2."
            )
            return

        self.config.temperature = value
        self.config.save()
        CONSOLE.print(f"[green]Temperature set to:[/green] {value}\n")

    def set_refresh_rate(self):
        """Set a new custom refresh rate"""
        rate = self._prompt_wrapper(HTML("Enter a refresh rate<seagreen>:</seagreen> "))
        if not rate:
            return
        try:
            value = int(rate)
            if value <= 3:
                raise ValueError
        except ValueError:
            self.panel.spawn_error_panel(
                "VALUE ERROR", "Please enter a positive number ≥ 4."
            )
            return

        self.config.refresh_rate = value
        self.config.save()
        CONSOLE.print(f"[green]Refresh rate set to:[/green] {value}\n")

    def set_code_theme(self):
        """Allows the user to change out the rich markdown theme"""
        theme = self._prompt_wrapper(
            HTML("Enter a valid theme name<seagreen>:</seagreen> ")
        )
        if not theme:
            return

        self.config.rich_code_theme = theme.lower()
        self.config.save()
        CONSOLE.print(f"[green]Your theme has been set to: [/green]{theme}\n")

    def set_api_key(self):
        """Allows the user to set an API key. SAFELY stores the user's API key with keyring"""
        new_key = self._prompt_wrapper(HTML("Enter an API key<seagreen>:</seagreen> "))
        if not new_key:
            return
        try:
            # Try to store securely w/ keyring
            set_password(KEYRING_SERVICE, USER_NAME, new_key)
            CONSOLE.print("[green]API key updated.[/green]\n")
        except (KeyringError, ValueError, RuntimeError, OSError) as e:
            self.panel.spawn_error_panel(
                "KEYRING ERROR", f"Could not save to your OS keychain: {e}"
            )
            return
        self.engine.backend.reset_clients()
