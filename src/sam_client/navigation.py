"""Which screen the user has navigated to, independent of snapshot content."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Home:
    pass


@dataclass(frozen=True)
class Conversation:
    counterparty: str


Navigation = Union[Home, Conversation]

HOME = Home()


def open_conversation(did_key: str) -> Conversation:
    if not did_key:
        raise ValueError("conversation counterparty must be a non-empty did_key")
    return Conversation(counterparty=did_key)


def back() -> Home:
    return HOME
