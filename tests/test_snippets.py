"""Fenced code block extraction."""

from ait.conversation import Message
from ait.snippets import find_fenced_code_snippets, snippets_from_messages


def test_find_snippets_with_language_tags():
    lines = [
        "Hello, world!",
        "```rust",
        "fn main() {",
        '    println!("Hello, world!");',
        "}",
        "```",
        "This is a test.",
        "```python",
        "def main():",
        '    print("Hello, world!")',
        "```",
    ]
    assert find_fenced_code_snippets(lines) == [
        'fn main() {\n    println!("Hello, world!");\n}',
        'def main():\n    print("Hello, world!")',
    ]


def test_find_snippets_keeps_indentation_of_indented_fences():
    lines = [
        "Hello, world!",
        "    ```rust",
        "    fn main() {",
        '        println!("Hello, world!");',
        "    }",
        "    ```",
        "This is a test.",
        "    ```python",
        "    def main():",
        '        print("Hello, world!")',
        "    ```",
    ]
    assert find_fenced_code_snippets(lines) == [
        '    fn main() {\n        println!("Hello, world!");\n    }',
        '    def main():\n        print("Hello, world!")',
    ]


def test_unterminated_block_is_dropped():
    assert find_fenced_code_snippets(["```", "x = 1"]) == []


def test_trailing_blank_lines_are_trimmed():
    assert find_fenced_code_snippets(["```", "x = 1", "", "```"]) == ["x = 1"]


def test_snippets_from_messages_in_order():
    messages = [
        Message.user("```\nfrom user\n```"),
        Message.assistant("Sure:\n```sh\nls -la\n```\nand\n```\npwd\n```"),
        Message.error("no code here"),
    ]
    assert snippets_from_messages(messages) == ["from user", "ls -la", "pwd"]
