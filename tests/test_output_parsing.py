from __future__ import annotations

import json

import allure

from agent_bridge.agents.output import parse_agent_output

pytestmark = [
    allure.epic("Agent Adapters"),
    allure.feature("Output Parsing"),
]


def test_single_json_object_with_result_and_session() -> None:
    stdout = json.dumps({"type": "result", "result": "Hello!", "session_id": "sess-9"})

    parsed = parse_agent_output(stdout, "sess-1")

    assert parsed.output == "Hello!"
    assert parsed.session_id == "sess-9"
    assert parsed.grammar == "json"
    assert parsed.degraded is False


def test_single_json_object_without_session_keeps_given_id() -> None:
    parsed = parse_agent_output('{"response": "ok"}\n', "sess-1")

    assert parsed.output == "ok"
    assert parsed.session_id == "sess-1"


def test_codex_event_stream() -> None:
    stdout = "\n".join(
        [
            json.dumps({"type": "thread.started", "thread_id": "th-42"}),
            json.dumps({"type": "turn.started"}),
            json.dumps({"type": "item.completed", "item": {"type": "reasoning", "text": "hmm"}}),
            json.dumps(
                {"type": "item.completed", "item": {"type": "agent_message", "text": "Done."}},
            ),
            json.dumps({"type": "turn.completed"}),
        ],
    )

    parsed = parse_agent_output(stdout, "pre-generated")

    assert parsed.output == "Done."
    assert parsed.session_id == "th-42"
    assert parsed.grammar == "ndjson"


def test_opencode_event_stream_joins_text_parts() -> None:
    stdout = "\n".join(
        [
            json.dumps({"type": "step_start", "sessionID": "ses_abc"}),
            json.dumps({"type": "text", "part": {"text": "Hello, "}}),
            json.dumps({"type": "text", "part": {"text": "world"}}),
        ],
    )

    parsed = parse_agent_output(stdout, "ignored")

    assert parsed.output == "Hello, world"
    assert parsed.session_id == "ses_abc"


def test_session_id_inside_part_is_found() -> None:
    stdout = json.dumps({"type": "text", "part": {"text": "hi", "sessionID": "ses_part"}})

    parsed = parse_agent_output(stdout, "fallback")

    assert parsed.output == "hi"
    assert parsed.session_id == "ses_part"


def test_unrecognized_output_is_passed_through_as_degraded_raw_text() -> None:
    parsed = parse_agent_output("just some text\n", "sess-1")

    assert parsed.output == "just some text"
    assert parsed.session_id == "sess-1"
    assert parsed.grammar == "raw"
    assert parsed.degraded is True


def test_mixed_json_and_text_lines_fall_back_to_raw() -> None:
    stdout = json.dumps({"type": "text", "text": "a"}) + "\nwarning: something\n"

    parsed = parse_agent_output(stdout, "sess-1")

    assert parsed.grammar == "raw"
    assert "warning: something" in parsed.output


def test_empty_output_is_not_degraded() -> None:
    parsed = parse_agent_output("   \n", "sess-1")

    assert parsed.output == ""
    assert parsed.degraded is False


def test_claude_error_result_without_reply_falls_back_to_raw_text() -> None:
    stdout = json.dumps(
        {
            "type": "result",
            "subtype": "error_max_turns",
            "is_error": True,
            "session_id": "sess-err",
        },
    )

    parsed = parse_agent_output(stdout + "\n", "sess-1")

    assert parsed.output == stdout
    assert parsed.session_id == "sess-err"
    assert parsed.degraded is True


def test_event_stream_without_text_events_falls_back_to_raw_text() -> None:
    stdout = "\n".join(
        [
            json.dumps({"type": "thread.started", "thread_id": "th-7"}),
            json.dumps({"type": "turn.completed"}),
        ],
    )

    parsed = parse_agent_output(stdout, "pre-generated")

    assert parsed.output == stdout
    assert parsed.session_id == "th-7"
    assert parsed.grammar == "ndjson"
    assert parsed.degraded is True


def test_empty_reply_key_yields_to_next_reply_key() -> None:
    parsed = parse_agent_output('{"output": "", "response": "X"}', "sess-1")

    assert parsed.output == "X"
    assert parsed.grammar == "json"
    assert parsed.degraded is False


def test_json_object_with_only_empty_reply_is_passed_through() -> None:
    stdout = '{"output": "", "sessionId": "sess-2"}'

    parsed = parse_agent_output(stdout, "sess-1")

    assert parsed.output == stdout
    assert parsed.session_id == "sess-2"
    assert parsed.grammar == "json"
    assert parsed.degraded is True
