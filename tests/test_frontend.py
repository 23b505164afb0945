from __future__ import annotations

import allure

from agent_bridge.frontend import (
    DEFAULT_THREAD_NAME,
    ConsoleFrontend,
    InboundMessage,
    generate_thread_name,
    split_message,
)

pytestmark = [
    allure.epic("Chat Front-end"),
    allure.feature("Messages and Threads"),
]


def test_thread_name_is_truncated_and_never_empty() -> None:
    assert generate_thread_name("  fix the login bug  ") == "fix the login bug"
    assert generate_thread_name("") == DEFAULT_THREAD_NAME
    assert generate_thread_name("y" * 80) == "y" * 80

    long_name = generate_thread_name("z" * 81)
    assert len(long_name) == 80
    assert long_name.endswith("...")


def test_split_message_prefers_newline_then_space_then_hard_split() -> None:
    assert split_message("short", limit=10) == ["short"]
    assert split_message("line one\nline two", limit=12) == ["line one", "line two"]
    assert split_message("aaaa bbbb cccc", limit=10) == ["aaaa bbbb", "cccc"]
    assert split_message("x" * 25, limit=10) == ["x" * 10, "x" * 10, "x" * 5]
    assert split_message("") == []


def test_split_message_default_limit_fits_platform() -> None:
    chunks = split_message(("word " * 1000).strip())

    assert all(len(chunk) <= 2000 for chunk in chunks)
    assert " ".join(chunks).split() == ["word"] * 1000


def test_console_frontend_emits_lines() -> None:
    lines: list[str] = []
    frontend = ConsoleFrontend(lines.append)

    frontend.send_typing("t1")
    frontend.rename_thread("t1", "Hello")
    frontend.deliver_reply("t1", "answer")
    frontend.notify_failure("t1", "oops")

    assert lines == ["[t1] thread named: Hello", "[t1] answer", "[t1] ! oops"]


def test_inbound_message_origin() -> None:
    message = InboundMessage(
        thread_id="t1",
        author_id="u1",
        content="hi",
        channel_id="t1",
        parent_channel_id="c1",
        role_ids=frozenset({"dev"}),
    )

    origin = message.origin()

    assert origin.author_id == "u1"
    assert origin.parent_channel_id == "c1"
    assert origin.role_ids == frozenset({"dev"})
    assert origin.is_direct is False
