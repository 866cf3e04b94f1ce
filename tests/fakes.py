"""In-memory stand-ins for the chat platform used by tracker and scheduler tests."""

from __future__ import annotations

from dataclasses import dataclass

from aqbot.core.ports import BoardUpdate, MessageContent, ThreadPermissionError


@dataclass
class Sent:
    target_id: str
    message_id: str
    content: MessageContent


class FakeChat:
    """Records every post, edit, thread and lock instead of talking to Discord."""

    def __init__(self, *, thread_forbidden: bool = False, fail_posts: bool = False) -> None:
        self.thread_forbidden = thread_forbidden
        self.fail_posts = fail_posts
        self.posts: list[Sent] = []
        self.edits: list[Sent] = []
        self.threads: list[tuple[str, str, str]] = []
        self.locked: list[str] = []
        self._next_id = 9000

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    async def post_message(self, target_id: str, content: MessageContent) -> str:
        if self.fail_posts:
            raise RuntimeError("send failed")
        message_id = self._new_id()
        self.posts.append(Sent(target_id, message_id, content))
        return message_id

    async def edit_message(self, target_id: str, message_id: str, content: MessageContent) -> None:
        self.edits.append(Sent(target_id, message_id, content))

    async def lock_thread(self, thread_id: str) -> None:
        self.locked.append(thread_id)

    async def create_thread(self, target_id: str, parent_message_id: str, name: str) -> str:
        if self.thread_forbidden:
            raise ThreadPermissionError("Missing Permissions")
        self.threads.append((target_id, parent_message_id, name))
        return self._new_id()

    def texts(self) -> list[str]:
        """Plain-text posts, in order."""
        return [sent.content for sent in self.posts if isinstance(sent.content, str)]

    def boards(self) -> list[BoardUpdate]:
        """Board posts followed by board edits."""
        return [
            sent.content
            for sent in [*self.posts, *self.edits]
            if isinstance(sent.content, BoardUpdate)
        ]


class FakeRoles:
    def __init__(self, members: dict[str, list[str]]) -> None:
        self.members = members

    async def resolve_role_members(self, role_id: str) -> list[str] | None:
        members = self.members.get(role_id)
        return list(members) if members is not None else None
