"""@mention handling for task chat.

Pure functions over the task payload served by ``GET /api/tasks/{id}`` and the
messages already loaded in a chat session. Nothing here touches the network.
"""

from __future__ import annotations

import re
import string
from collections.abc import Callable, Iterable, Mapping, MutableMapping
from dataclasses import dataclass
from typing import Any, Literal

Role = Literal["creator", "assigned", "participant"]

ROLE_RANK: dict[str, int] = {"creator": 0, "assigned": 1, "participant": 2}
DEFAULT_DROPDOWN_LIMIT = 10

# "@" then one or more whitespace-free words joined by single spaces.
_MENTION_SPAN = re.compile(r"@([^@\s]+(?: [^@\s]+)*)")
_WORD = re.compile(r"[^@\s]+")
_TRAILING_PUNCTUATION = string.punctuation.replace("@", "")


@dataclass(frozen=True)
class MentionableUser:
    id: Any
    name: str
    role: Role

    @property
    def user_id(self) -> Any:
        return self.id


@dataclass(frozen=True)
class MentionQuery:
    """Live dropdown state: where the ``@`` sits and what follows it."""

    start: int
    search: str


@dataclass(frozen=True)
class MentionSelection:
    text: str
    cursor: int


@dataclass(frozen=True)
class MessageFragment:
    text: str
    raw: str
    is_mention: bool = False
    user_id: Any = None


def same_user(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)


def _first_present(source: Mapping, *keys: str) -> Any:
    for key in keys:
        value = source.get(key)
        if value not in (None, ""):
            return value
    return None


def _pair(user_id: Any, name: Any) -> tuple[Any, str] | None:
    if user_id in (None, "") or not name:
        return None
    return user_id, str(name)


# ── Creator extraction ──────────────────────────────────────────
# Task payloads name the creator differently depending on which endpoint
# produced them. Each extractor handles one shape; the first hit wins.


def _creator_object(task: Mapping) -> tuple[Any, str] | None:
    creator = task.get("creator")
    if isinstance(creator, Mapping):
        return _pair(_first_present(creator, "userId", "id"), creator.get("name"))
    return None


def _created_by(task: Mapping) -> tuple[Any, str] | None:
    created_by = task.get("createdBy")
    if isinstance(created_by, Mapping):
        return _pair(_first_present(created_by, "userId", "id"), created_by.get("name"))
    return _pair(created_by, task.get("creatorName"))


def _flat_creator_id(task: Mapping) -> tuple[Any, str] | None:
    return _pair(task.get("creatorId"), task.get("creatorName"))


def _flat_creator_user_id(task: Mapping) -> tuple[Any, str] | None:
    return _pair(task.get("creatorUserId"), task.get("creatorName"))


def _created_by_user(task: Mapping) -> tuple[Any, str] | None:
    user = task.get("createdByUser")
    if isinstance(user, Mapping):
        return _pair(_first_present(user, "userId", "id"), user.get("name"))
    return None


CREATOR_EXTRACTORS: tuple[Callable[[Mapping], tuple[Any, str] | None], ...] = (
    _creator_object,
    _created_by,
    _flat_creator_id,
    _flat_creator_user_id,
    _created_by_user,
)


def resolve_creator(task: Mapping | None) -> MentionableUser | None:
    if not task:
        return None
    for extract in CREATOR_EXTRACTORS:
        found = extract(task)
        if found is not None:
            user_id, name = found
            return MentionableUser(id=user_id, name=name, role="creator")
    return None


def _assigned_entries(task: Mapping) -> list[Mapping]:
    entries: list[Mapping] = []
    for field in ("assignedUserDetails", "assignedUsers"):
        value = task.get(field)
        if isinstance(value, list):
            entries.extend(entry for entry in value if isinstance(entry, Mapping))
    return entries


def build_mentionable_users(
    task: Mapping | None,
    messages: Iterable[Any] = (),
    current_user_id: Any = None,
) -> list[MentionableUser]:
    """Creator, then assignees, then everyone who has posted; one entry per user id.

    The first role discovered for an id is kept, so a creator who is also
    assigned stays ``creator``. The current user is never offered.
    """
    users: dict[str, MentionableUser] = {}

    def add(user_id: Any, name: Any, role: Role) -> None:
        if user_id in (None, "") or not name:
            return
        if same_user(user_id, current_user_id):
            return
        users.setdefault(str(user_id), MentionableUser(id=user_id, name=str(name), role=role))

    creator = resolve_creator(task)
    if creator is not None:
        add(creator.id, creator.name, "creator")

    if task:
        for entry in _assigned_entries(task):
            add(_first_present(entry, "userId", "id"), entry.get("name"), "assigned")

    for message in messages:
        if getattr(message, "is_temp", False):
            continue
        sender = getattr(message, "sender", None) or {}
        add(getattr(message, "user_id", None), sender.get("name"), "participant")

    return sorted(users.values(), key=lambda user: ROLE_RANK[user.role])


# ── Typing and selection ────────────────────────────────────────


def detect_mention_query(text: str, cursor: int | None = None) -> MentionQuery | None:
    """Return the live mention search for the text before ``cursor``, if any.

    The ``@`` must open the text or follow a space, and the search token
    after it must not contain a space yet.
    """
    before = text if cursor is None else text[:cursor]
    at = before.rfind("@")
    while at != -1 and at > 0 and before[at - 1] != " ":
        at = before.rfind("@", 0, at)
    if at == -1:
        return None
    search = before[at + 1 :]
    if " " in search:
        return None
    return MentionQuery(start=at, search=search)


def filter_mention_candidates(
    users: Iterable[MentionableUser],
    search: str,
    limit: int = DEFAULT_DROPDOWN_LIMIT,
) -> list[MentionableUser]:
    needle = (search or "").lower()
    matches = [user for user in users if needle in user.name.lower()] if needle else list(users)
    return matches[:limit]


def apply_mention_selection(
    text: str,
    query: MentionQuery,
    user: MentionableUser,
    mention_map: MutableMapping[str, Any],
) -> MentionSelection:
    before = text[: query.start]
    after = text[query.start + 1 + len(query.search) :]
    inserted = f"@{user.name} "
    mention_map[f"@{user.name}"] = user.id
    return MentionSelection(text=before + inserted + after, cursor=len(before) + len(inserted))


# ── Scanning sent and received text ─────────────────────────────


@dataclass(frozen=True)
class _SpanMatch:
    start: int
    end: int
    token: str
    user_id: Any
    display: str | None


def _prefixes(text: str, match: re.Match) -> list[tuple[str, int]]:
    """Word prefixes of a mention span, longest first, each with its end offset."""
    body_start = match.start(1)
    body = match.group(1)
    candidates: list[tuple[str, int]] = []
    for word in reversed(list(_WORD.finditer(body))):
        raw = body[: word.end()]
        candidates.append((raw, body_start + len(raw)))
        stripped = raw.rstrip(_TRAILING_PUNCTUATION)
        if stripped and stripped != raw:
            candidates.append((stripped, body_start + len(stripped)))
    return candidates


def _scan(
    text: str,
    users: list[MentionableUser],
    mention_map: Mapping[str, Any],
    *,
    for_display: bool,
) -> list[_SpanMatch]:
    by_name = {}
    for user in users:
        by_name.setdefault(user.name.lower(), user)
    by_id = {str(user.id): user for user in users}

    found: list[_SpanMatch] = []
    for match in _MENTION_SPAN.finditer(text):
        resolved: _SpanMatch | None = None
        for candidate, end in _prefixes(text, match):
            named = by_name.get(candidate.lower())
            mapped = mention_map.get(f"@{candidate}")
            if for_display:
                if named is not None:
                    resolved = _SpanMatch(match.start(), end, candidate, named.id, named.name)
                elif mapped is not None:
                    mapped_user = by_id.get(str(mapped))
                    resolved = _SpanMatch(
                        match.start(), end, candidate, mapped, mapped_user.name if mapped_user else candidate
                    )
            else:
                if mapped is not None:
                    resolved = _SpanMatch(match.start(), end, candidate, mapped, candidate)
                elif named is not None:
                    resolved = _SpanMatch(match.start(), end, candidate, named.id, named.name)
            if resolved is not None:
                break

        if resolved is None:
            first = _WORD.match(text, match.start(1))
            token = first.group(0).rstrip(_TRAILING_PUNCTUATION) or first.group(0)
            end = match.start(1) + len(token)
            if for_display and token.isdigit():
                user = by_id.get(token)
                resolved = _SpanMatch(
                    match.start(), end, token, user.id if user else token, user.name if user else f"User {token}"
                )
            else:
                resolved = _SpanMatch(match.start(), end, token, None, token)
        found.append(resolved)
    return found


def extract_mentions(
    text: str,
    users: Iterable[MentionableUser],
    mention_map: Mapping[str, Any] | None = None,
) -> list[Any]:
    """User ids mentioned in ``text``, in order of appearance, without repeats.

    A span resolves through the selection map first, then by exact
    (case-insensitive) name. Spans that match nobody are dropped.
    """
    ids: list[Any] = []
    seen: set[str] = set()
    for span in _scan(text or "", list(users), mention_map or {}, for_display=False):
        if span.user_id is None or str(span.user_id) in seen:
            continue
        seen.add(str(span.user_id))
        ids.append(span.user_id)
    return ids


def render_mention_fragments(
    text: str,
    users: Iterable[MentionableUser],
    mention_map: Mapping[str, Any] | None = None,
) -> list[MessageFragment]:
    """Split ``text`` into plain and mention fragments, in order.

    Joining every fragment's ``raw`` gives back ``text`` unchanged; ``text``
    on a mention fragment carries the resolved display name.
    """
    if not text:
        return []
    fragments: list[MessageFragment] = []
    cursor = 0
    for span in _scan(text, list(users), mention_map or {}, for_display=True):
        if span.start > cursor:
            plain = text[cursor : span.start]
            fragments.append(MessageFragment(text=plain, raw=plain))
        fragments.append(
            MessageFragment(
                text=f"@{span.display}",
                raw=text[span.start : span.end],
                is_mention=True,
                user_id=span.user_id,
            )
        )
        cursor = span.end
    if cursor < len(text):
        rest = text[cursor:]
        fragments.append(MessageFragment(text=rest, raw=rest))
    return fragments
