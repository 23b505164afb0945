"""User / role / channel allowlist check."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class MessageOrigin:
    """Where an inbound message came from, as reported by the chat front-end."""

    author_id: str
    channel_id: str | None = None
    parent_channel_id: str | None = None
    role_ids: frozenset[str] = field(default_factory=frozenset)
    is_direct: bool = False


class Allowlist:
    """Empty lists mean "no restriction".

    Direct messages are checked against the user list only. Channel messages
    must come from an allowed channel (or a thread under one), and when a user
    or role list is configured the author must match at least one of them.
    """

    def __init__(
        self,
        *,
        users: frozenset[str] = frozenset(),
        roles: frozenset[str] = frozenset(),
        channels: frozenset[str] = frozenset(),
    ) -> None:
        self.users = users
        self.roles = roles
        self.channels = channels

    @property
    def configured(self) -> bool:
        return bool(self.users or self.roles or self.channels)

    def check(self, origin: MessageOrigin) -> bool:
        if not self.configured:
            return True

        if origin.is_direct:
            if self.users:
                return origin.author_id in self.users
            return True

        if self.channels and not self._channel_allowed(origin):
            return False

        if self.users and origin.author_id in self.users:
            return True
        if self.roles and self.roles & origin.role_ids:
            return True
        return not (self.users or self.roles)

    def _channel_allowed(self, origin: MessageOrigin) -> bool:
        if origin.channel_id is not None and origin.channel_id in self.channels:
            return True
        return origin.parent_channel_id is not None and origin.parent_channel_id in self.channels
