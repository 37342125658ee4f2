"""Builds and spawns UI objects. UIConstructor and GlobalPanels live here."""

import textwrap

import tiktoken
from rich import box
from rich.console import Group, RenderableType
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from ait import __version__
from ait.conversation import Message, Role, TurnStatus
from ait.globals import (
    CHAT_LOG_FILE,
    CONFIG_FILE,
    CONSOLE,
    DB_FILE,
    LOG_DIR,
    spinner_constructor,
)
from ait.selection import SelectionList


class UIConstructor:
    """Constructs and returns various UI objects"""

    def __init__(self, config, engine):
        self.config = config
        self.engine = engine
        self.encoder = tiktoken.get_encoding("o200k_base")
        self.token_cache: list[tuple[int, int] | None] = []

    def count_tokens(self) -> int:
        """Counts and caches tokens, one cache slot per transcript message."""
        messages = self.engine.conversation.messages
        # Ensure cache length matches the transcript
        cache = self.token_cache
        diff = len(messages) - len(cache)
        if diff > 0:
            cache.extend([None] * diff)
        elif diff < 0:
            del cache[len(messages) :]

        total = 0
        for i, msg in enumerate(messages):
            text_hash = hash(msg.text)
            cached = cache[i]
            if cached is None or cached[0] != text_hash:
                try:
                    count = len(self.encoder.encode(msg.text))
                except Exception:
                    count = 0
                cache[i] = (text_hash, count)
            total += cache[i][1]
        return total

    def user_panel_constructor(self, content: str) -> Panel:
        return Panel(
            content,
            box=box.HORIZONTALS,
            padding=(0, 0),
            title=Text("🌐 You", style="bold blue"),
            title_align="left",
            border_style="blue",
            style="default",
        )

    def assistant_panel_constructor(self, content: str) -> Panel:
        return Panel(
            Markdown(content, code_theme=self.config.rich_code_theme),
            title=Text("💬 Response", style="bold green"),
            title_align="left",
            border_style="green",
            style="default",
            width=None,
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def failed_turn_panel_constructor(self, content: str) -> Panel:
        return Panel(
            content,
            title=Text("❌ Error", style="bold red"),
            title_align="left",
            border_style="red",
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def message_panel_constructor(self, message: Message) -> Panel:
        if message.role is Role.USER:
            return self.user_panel_constructor(message.text)
        if message.role is Role.ASSISTANT:
            return self.assistant_panel_constructor(message.text)
        return self.failed_turn_panel_constructor(message.text)

    def pending_renderable(self) -> RenderableType:
        """Live view of the outstanding turn."""
        turn = self.engine.pending
        if turn is None:
            return Group()
        if turn.status is TurnStatus.NOT_STARTED:
            return spinner_constructor(f"Contacting {self.engine.model}...")
        if not turn.buffer:
            return spinner_constructor("Thinking...")
        return self.assistant_panel_constructor(turn.buffer)

    def status_panel_constructor(self) -> Panel:
        status_text = Text.assemble(
            (" ", "cyan"),
            ("Model: "),
            (f"{self.engine.model}", "sandy_brown"),
            (" | "),
            (f"Turn: {self.engine.turn_number()}"),
            (" | "),
            (f"Tokens: {self.count_tokens()}"),
        )
        if self.engine.conversation.conversation_id is not None:
            status_text.append(f" | Chat: #{self.engine.conversation.conversation_id}")
        return Panel(
            status_text,
            border_style="dim",
            style="dim",
            expand=False,
        )

    def intro_panel_constructor(self) -> Panel:
        intro_text = Text.assemble(
            ("Model: ", "bold sandy_brown"),
            (f"{self.engine.model}"),
            ("\nProfile: ", "bold sandy_brown"),
            (f"{self.config.alias_name}"),
            ("\nSystem Prompt: ", "bold sandy_brown"),
            (f"{self.config.system_prompt}", "italic"),
        )
        return Panel(
            intro_text,
            title=Text(f"🔮 Ait {__version__}", "bold medium_orchid"),
            title_align="left",
            border_style="medium_orchid",
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    @staticmethod
    def error_panel_constructor(error: str, exception: str) -> Panel:
        """Also used by main() before a UIConstructor exists."""
        return Panel(
            exception,
            title=Text(f"❌ {error}", style="bold red"),
            title_align="left",
            border_style="red",
            expand=False,
        )

    def copy_panel_constructor(self, blocks: str) -> Panel:
        wrapped = f"### The following has been copied to your clipboard\n```\n{blocks}\n```"
        return Panel(
            Markdown(wrapped, code_theme=self.config.rich_code_theme),
            title=Text("📋 Clipboard Sync", style="bold orange1"),
            title_align="left",
            border_style="orange1",
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def list_panel_constructor(
        self, title: str, items: SelectionList, label=str
    ) -> Panel:
        """Numbered picker list; the chosen entry is starred."""
        lines = Text()
        for i, item in enumerate(items.items):
            marker = "★ " if i == items.chosen else "  "
            style = "bold cyan" if i == items.selected else ""
            lines.append(f"{marker}{i + 1}. {label(item)}\n", style=style)
        if not items.items:
            lines.append("Nothing here yet.", style="dim")
        return Panel(
            lines,
            title=Text(title, style="bold cyan"),
            title_align="left",
            border_style="cyan",
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def help_chart_constructor(self) -> Markdown:
        return Markdown(
            textwrap.dedent("""
            | **Conversation** | *Chat with the selected model* |
            | --- | ----------- |
            | *any text* | Send a prompt. Only one prompt may be unanswered at a time. |
            | `!r` or `!redo` | Remove the last turn and put its prompt back in the editor. |
            | `!n` or `!new` | Start a new chat. |
            | `!y` or `!yank` | Copy the latest response to your clipboard. |
            | `!s` or `!snippets` | Pick a code block from this chat and copy it. |
            | `Ctrl + C` | Cancel the response that is streaming. Also exits from the root prompt. |

            | **History & Models** | *Switch context* |
            | --- | ----------- |
            | `!m` or `!model` | Choose the model used for the next turns. |
            | `!hist` or `!history` | Browse saved chats, optionally `!history <text>` to filter. Load or delete. |

            | **Configuration** | *Persistent settings* |
            | --- | ----------- |
            | `!config` | Display your current configuration and file locations. |
            | `!prompt` | Set a new system prompt. Takes effect on your next chat. |
            | `!temp` | Set the temperature. Ignored by o1/o3 reasoning models. |
            | `!rate` | Set the refresh rate while streaming (default is 30). |
            | `!theme` | Change your Markdown theme. Built-in themes can be found at https://pygments.org/styles/ |
            | `!key` | Set an API key. Your API key is stored in your OS keychain. |
            | `!clear` | Clear the terminal window. |
            | `!h` or `!help` | Show this chart. |
            | `!q` or `!quit` | Exit Ait. |
            """)
        )

    def settings_chart_constructor(self) -> Markdown:
        return Markdown(
            textwrap.dedent(f"""
            | **Current Settings** | *Your current persistent settings* |
            | --- | ----------- |
            | **Profile**: | *{self.config.alias_name}* |
            | | |
            | **Model**: | *{self.engine.model}* |
            | | |
            | **System Prompt**: | *{self.config.system_prompt}* |
            | | |
            | **Temperature**: | *{self.config.temperature}* |
            | | |
            | **Refresh Rate**: | *{self.config.refresh_rate}* |
            | | |
            | **Streaming**: | *{self.config.stream_responses}* |
            | | |
            | **Markdown Theme**: | *{self.config.rich_code_theme}* |
            - Your configuration file is located at: `{CONFIG_FILE}`
            - Your chat database is located at:      `{DB_FILE}`
            - The latest chat log is located at:     `{CHAT_LOG_FILE}`
            - Your error logs are located at:        `{LOG_DIR}`
            """)
        )


class GlobalPanels:
    """Global panel spawner"""

    def __init__(self, engine, config, ui: UIConstructor):
        self.engine = engine
        self.config = config
        self.ui: UIConstructor = ui

    def spawn_intro_panel(self):
        """Simple welcome panel, prints on application launch."""
        CONSOLE.print(self.ui.intro_panel_constructor())
        CONSOLE.print(Markdown("Type `!h` for a list of commands."))
        CONSOLE.print()

    def spawn_status_panel(self):
        CONSOLE.print(self.ui.status_panel_constructor())
        CONSOLE.print()

    def spawn_error_panel(self, error: str, exception: str):
        """Error panel template for Ait, used in Chat and main()"""
        CONSOLE.print(self.ui.error_panel_constructor(error, exception))
        CONSOLE.print()

    def spawn_user_panel(self, content: str):
        CONSOLE.print()
        CONSOLE.print(self.ui.user_panel_constructor(content))
        CONSOLE.print()

    def spawn_message_panel(self, message: Message):
        """Spawns a transcript panel - for a scrollable history."""
        CONSOLE.print(self.ui.message_panel_constructor(message))

    def spawn_copy_panel(self, blocks: str):
        CONSOLE.print(self.ui.copy_panel_constructor(blocks))
        CONSOLE.print()

    def spawn_list_panel(self, title: str, items: SelectionList, label=str):
        CONSOLE.print(self.ui.list_panel_constructor(title, items, label))
        CONSOLE.print()

    def render_history(self):
        """Reprints the whole transcript, e.g. after loading a chat."""
        CONSOLE.clear()
        self.spawn_intro_panel()
        for message in self.engine.conversation:
            if message.role is Role.USER:
                self.spawn_user_panel(message.text)
            else:
                self.spawn_message_panel(message)
        self.spawn_status_panel()
