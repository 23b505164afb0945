from __future__ import annotations

import allure

from agent_bridge.admission.allowlist import Allowlist, MessageOrigin

pytestmark = [
    allure.epic("Admission"),
    allure.feature("Allowlist"),
]


def test_empty_allowlist_admits_everyone() -> None:
    allowlist = Allowlist()

    assert allowlist.configured is False
    assert allowlist.check(MessageOrigin(author_id="anyone", channel_id="c1")) is True


def test_direct_messages_only_check_users() -> None:
    allowlist = Allowlist(users=frozenset({"u1"}), channels=frozenset({"c1"}))

    assert allowlist.check(MessageOrigin(author_id="u1", is_direct=True)) is True
    assert allowlist.check(MessageOrigin(author_id="u2", is_direct=True)) is False
    assert Allowlist(roles=frozenset({"r1"})).check(
        MessageOrigin(author_id="u2", is_direct=True),
    )


def test_channel_list_accepts_threads_under_allowed_parent() -> None:
    allowlist = Allowlist(channels=frozenset({"c1"}))

    assert allowlist.check(MessageOrigin(author_id="u1", channel_id="c1")) is True
    assert (
        allowlist.check(MessageOrigin(author_id="u1", channel_id="t9", parent_channel_id="c1"))
        is True
    )
    assert allowlist.check(MessageOrigin(author_id="u1", channel_id="c2")) is False


def test_user_or_role_match_required_when_configured() -> None:
    allowlist = Allowlist(users=frozenset({"u1"}), roles=frozenset({"admins"}))

    assert allowlist.check(MessageOrigin(author_id="u1", channel_id="c1")) is True
    assert (
        allowlist.check(
            MessageOrigin(author_id="u2", channel_id="c1", role_ids=frozenset({"admins"})),
        )
        is True
    )
    assert (
        allowlist.check(
            MessageOrigin(author_id="u2", channel_id="c1", role_ids=frozenset({"guests"})),
        )
        is False
    )


def test_allowed_user_in_disallowed_channel_is_rejected() -> None:
    allowlist = Allowlist(users=frozenset({"u1"}), channels=frozenset({"c1"}))

    assert allowlist.check(MessageOrigin(author_id="u1", channel_id="c2")) is False
