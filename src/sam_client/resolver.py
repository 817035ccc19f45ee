"""Derive chat/friend relationships from a snapshot.

A chat's participant list does not say which slot holds the local identity.
The counterparty is therefore inferred from the friends list: slot A when it
is a listed friend, slot B otherwise. That is only correct while at most one
participant is a friend; a chat whose peer has since been removed from the
friends list resolves to the local identity instead. Closing that gap needs
an explicit local-participant marker from the backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Iterator, Optional, Tuple

from sam_client.snapshot import Chat, Snapshot


@dataclass(frozen=True)
class ChatResolution:
    counterparty: str
    chat: Optional[Chat]
    candidates: int

    @property
    def exists(self) -> bool:
        return self.chat is not None


def counterparty_of(chat: Chat, friends_all: AbstractSet[str]) -> Optional[str]:
    participants = chat.participants
    if not participants:
        return None
    if len(participants) == 1:
        return participants[0]
    slot_a, slot_b = participants[0], participants[1]
    if slot_a in friends_all:
        return slot_a
    return slot_b


def iter_counterparties(snapshot: Snapshot) -> Iterator[Tuple[Chat, Optional[str]]]:
    """Yield ``(chat, counterparty)`` pairs in payload order."""

    friends_all = snapshot.friends.all_set()
    for chat in snapshot.chats.values():
        yield chat, counterparty_of(chat, friends_all)


def resolve_conversation(snapshot: Snapshot, did_key: str) -> ChatResolution:
    first: Optional[Chat] = None
    matches = 0
    for chat, counterparty in iter_counterparties(snapshot):
        if counterparty != did_key:
            continue
        matches += 1
        if first is None:
            first = chat
    return ChatResolution(counterparty=did_key, chat=first, candidates=matches)


def find_chat(snapshot: Snapshot, did_key: str) -> Optional[Chat]:
    return resolve_conversation(snapshot, did_key).chat


def display_name(snapshot: Snapshot, did_key: str) -> str:
    identity = snapshot.identities.get(did_key)
    if identity is None or not identity.username:
        return did_key
    return identity.username
