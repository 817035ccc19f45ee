"""Typed snapshot of the backend state plus the payload decoders.

The backend has shipped two payload revisions. The earlier one embeds an
identity record inline in every friend and participant entry; the later one
keeps a top-level ``identities`` directory and refers to identities by
did_key. Independently, the state may arrive as a named object or as a
positional tuple ordered by ``STATE_TUPLE_KEYS``. Both decoders normalize to
the same ``Snapshot`` shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

STATE_TUPLE_KEYS = (
    "account",
    "chats",
    "configuration",
    "counter",
    "friends",
    "identity_exists",
    "logged_in",
)
FRIEND_CATEGORIES = ("all", "incoming_requests", "outgoing_requests")
REVISION_DIRECTORY = "directory"
REVISION_INLINE = "inline"


class SnapshotDecodeError(ValueError):
    """Raised when a payload cannot be interpreted as a snapshot at all."""


@dataclass(frozen=True)
class Identity:
    did_key: str
    username: str


@dataclass(frozen=True)
class Message:
    sender: str
    value: str


@dataclass(frozen=True)
class Chat:
    id: str
    participants: Tuple[str, ...]
    messages: Tuple[Message, ...] = ()


@dataclass(frozen=True)
class Friends:
    """Relationship categories, each an ordered tuple of unique did_keys."""

    all: Tuple[str, ...] = ()
    incoming_requests: Tuple[str, ...] = ()
    outgoing_requests: Tuple[str, ...] = ()

    def category(self, name: str) -> Tuple[str, ...]:
        if name not in FRIEND_CATEGORIES:
            raise KeyError(name)
        return getattr(self, name)

    def all_set(self) -> frozenset:
        return frozenset(self.all)


@dataclass(frozen=True)
class Snapshot:
    identity_exists: bool = False
    logged_in: bool = False
    identities: Dict[str, Identity] = field(default_factory=dict)
    friends: Friends = field(default_factory=Friends)
    chats: Dict[str, Chat] = field(default_factory=dict)
    configuration: Any = None
    counter: Any = 0
    account: Any = None

    def with_logged_in(self, logged_in: bool) -> "Snapshot":
        return replace(self, logged_in=logged_in)


def _as_bool(value: Any) -> bool:
    return value is True


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _identity_from(raw: Any) -> Optional[Identity]:
    """Accept ``{"did_key", "username"}`` or the wrapped ``{"identity": {...}}`` form."""

    if not isinstance(raw, dict):
        return None
    inner = raw.get("identity")
    if isinstance(inner, dict):
        raw = inner
    did_key = raw.get("did_key")
    if not isinstance(did_key, str) or not did_key:
        return None
    return Identity(did_key=did_key, username=_as_str(raw.get("username")))


def _did_from(raw: Any, inline: Dict[str, Identity]) -> Optional[str]:
    if isinstance(raw, str):
        return raw or None
    identity = _identity_from(raw)
    if identity is None:
        return None
    inline.setdefault(identity.did_key, identity)
    return identity.did_key


def _did_list(raw: Any, inline: Dict[str, Identity]) -> List[str]:
    if isinstance(raw, dict):
        # Inline revision keys ``friends.all`` by did_key with identity values.
        dids: List[str] = []
        for key, value in raw.items():
            did = _did_from(value, inline) if value is not None else None
            if did is None and isinstance(key, str) and key:
                did = key
            if did is not None:
                dids.append(did)
        return dids
    if not isinstance(raw, (list, tuple, set, frozenset)):
        return []
    dids = []
    for item in raw:
        did = _did_from(item, inline)
        if did is not None:
            dids.append(did)
    return dids


def _dedupe(values: Iterable[str], taken: set) -> Tuple[str, ...]:
    ordered: List[str] = []
    for value in values:
        if value in taken:
            continue
        taken.add(value)
        ordered.append(value)
    return tuple(ordered)


def _decode_friends(raw: Any, inline: Dict[str, Identity]) -> Friends:
    if not isinstance(raw, dict):
        return Friends()
    taken: set = set()
    categories = {name: _dedupe(_did_list(raw.get(name), inline), taken) for name in FRIEND_CATEGORIES}
    return Friends(**categories)


def _line_index(key: Any) -> Optional[int]:
    if isinstance(key, int) and not isinstance(key, bool):
        return key
    text = str(key)
    if not text.isdecimal():
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _message_value(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (list, tuple)):
        return "\n".join(_as_str(line) for line in raw)
    if isinstance(raw, dict):
        # Multi-line bodies sometimes arrive as an index-keyed object.
        indexed: List[Tuple[int, Any]] = []
        for key, line in raw.items():
            index = _line_index(key)
            if index is not None:
                indexed.append((index, line))
        indexed.sort(key=lambda item: item[0])
        return "\n".join(_as_str(line) for _, line in indexed)
    return _as_str(raw)


def _decode_message(raw: Any, inline: Dict[str, Identity]) -> Optional[Message]:
    if not isinstance(raw, dict):
        return None
    inner = raw.get("inner")
    if isinstance(inner, dict) and "sender" not in raw:
        raw = inner
    sender = _did_from(raw.get("sender"), inline)
    if sender is None:
        return None
    return Message(sender=sender, value=_message_value(raw.get("value")))


def _decode_chat(chat_id: str, raw: Any, inline: Dict[str, Identity]) -> Optional[Chat]:
    if not isinstance(raw, dict):
        return None
    participants = tuple(_did_list(raw.get("participants"), inline))
    messages_raw = raw.get("messages")
    messages: List[Message] = []
    if isinstance(messages_raw, (list, tuple)):
        for item in messages_raw:
            message = _decode_message(item, inline)
            if message is not None:
                messages.append(message)
    return Chat(id=_as_str(raw.get("id")) or chat_id, participants=participants, messages=tuple(messages))


def _decode_chats(raw: Any, inline: Dict[str, Identity]) -> Dict[str, Chat]:
    if not isinstance(raw, dict):
        return {}
    chats_raw = raw.get("all")
    entries: List[Tuple[str, Any]] = []
    if isinstance(chats_raw, dict):
        entries = [(str(key), value) for key, value in chats_raw.items()]
    elif isinstance(chats_raw, (list, tuple)):
        entries = [(_as_str(item.get("id")) if isinstance(item, dict) else "", item) for item in chats_raw]
    chats: Dict[str, Chat] = {}
    for chat_id, value in entries:
        chat = _decode_chat(chat_id, value, inline)
        if chat is not None and chat.id and chat.id not in chats:
            chats[chat.id] = chat
    return chats


def _decode_directory(raw: Any) -> Dict[str, Identity]:
    directory: Dict[str, Identity] = {}
    if isinstance(raw, dict):
        for key, value in raw.items():
            identity = _identity_from(value)
            if identity is None and isinstance(value, str) and isinstance(key, str):
                identity = Identity(did_key=key, username=value)
            if identity is not None:
                directory[identity.did_key] = identity
    elif isinstance(raw, (list, tuple)):
        for value in raw:
            identity = _identity_from(value)
            if identity is not None:
                directory[identity.did_key] = identity
    return directory


def _named_from_positional(payload: Iterable[Any]) -> Dict[str, Any]:
    return {key: value for key, value in zip(STATE_TUPLE_KEYS, payload)}


def decode_snapshot(payload: Any) -> Snapshot:
    """Normalize a backend state payload of either revision into a ``Snapshot``.

    Missing or malformed optional fields fall back to safe defaults. Only a
    payload that is neither a mapping nor a sequence is rejected.
    """

    if isinstance(payload, Snapshot):
        return payload
    if isinstance(payload, (list, tuple)):
        payload = _named_from_positional(payload)
    if not isinstance(payload, dict):
        raise SnapshotDecodeError(f"unsupported snapshot payload type: {type(payload).__name__}")

    try:
        return _decode_named(payload)
    except (TypeError, ValueError) as exc:
        raise SnapshotDecodeError(f"malformed snapshot payload: {exc}") from exc


def _decode_named(payload: Dict[str, Any]) -> Snapshot:
    inline: Dict[str, Identity] = {}
    friends = _decode_friends(payload.get("friends"), inline)
    chats = _decode_chats(payload.get("chats"), inline)
    identities = dict(inline)
    identities.update(_decode_directory(payload.get("identities")))

    counter = payload.get("counter", 0)
    return Snapshot(
        identity_exists=_as_bool(payload.get("identity_exists")),
        logged_in=_as_bool(payload.get("logged_in")),
        identities=identities,
        friends=friends,
        chats=chats,
        configuration=payload.get("configuration"),
        counter=counter if counter is not None else 0,
        account=payload.get("account"),
    )


def _identity_record(snapshot: Snapshot, did_key: str) -> Dict[str, str]:
    identity = snapshot.identities.get(did_key)
    username = identity.username if identity is not None else ""
    return {"did_key": did_key, "username": username}


def encode_snapshot(
    snapshot: Snapshot,
    *,
    revision: str = REVISION_DIRECTORY,
    positional: bool = False,
) -> Any:
    """Serialize a snapshot in the requested payload revision.

    The positional form predates the identity directory, so it always embeds
    identities inline.
    """

    if revision not in {REVISION_DIRECTORY, REVISION_INLINE}:
        raise ValueError(f"unknown snapshot revision: {revision}")
    inline = revision == REVISION_INLINE or positional

    def _ref(did_key: str) -> Any:
        if inline:
            return {"identity": _identity_record(snapshot, did_key)}
        return did_key

    friends: Dict[str, Any] = {}
    for name in FRIEND_CATEGORIES:
        dids = snapshot.friends.category(name)
        if inline and name == "all":
            friends[name] = {did: {"identity": _identity_record(snapshot, did)} for did in dids}
        else:
            friends[name] = [_ref(did) for did in dids]

    chats = {
        chat_id: {
            "id": chat.id,
            "participants": [_ref(did) for did in chat.participants],
            "messages": [{"sender": message.sender, "value": message.value} for message in chat.messages],
        }
        for chat_id, chat in snapshot.chats.items()
    }
    named: Dict[str, Any] = {
        "account": snapshot.account,
        "chats": {"all": chats},
        "configuration": snapshot.configuration,
        "counter": snapshot.counter,
        "friends": friends,
        "identity_exists": snapshot.identity_exists,
        "logged_in": snapshot.logged_in,
    }
    if not inline:
        named["identities"] = {
            did: {"did_key": identity.did_key, "username": identity.username}
            for did, identity in snapshot.identities.items()
        }
    if positional:
        return [named[key] for key in STATE_TUPLE_KEYS]
    return named
