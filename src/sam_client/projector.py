"""Pure projection of ``(Snapshot, Navigation)`` into exactly one screen."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sam_client import resolver
from sam_client.navigation import Conversation, Navigation
from sam_client.snapshot import FRIEND_CATEGORIES, Snapshot
from sam_client.validation import CREDENTIAL_MIN_LENGTH, CREDENTIAL_PATTERN

SCREEN_CREATE_IDENTITY = "create_identity"
SCREEN_LOGIN = "login"
SCREEN_HOME = "home"
SCREEN_CONVERSATION = "conversation"
SCREEN_FIRST_MESSAGE = "first_message"

ACTION_OPEN_CONVERSATION = "open_conversation"
ACTION_BACK = "back"

SECTION_HEADINGS = {
    "all": "Curators",
    "incoming_requests": "Incoming Contact Requests",
    "outgoing_requests": "Outgoing Contact Requests",
}

CREDENTIAL_HINT = (
    f"Username and password must be at least {CREDENTIAL_MIN_LENGTH} characters "
    "and use only letters, digits, - or _"
)


@dataclass(frozen=True)
class Affordance:
    """An interactive element bound to a backend command or a local action.

    ``args`` are fixed arguments captured at projection time. ``input_arg``
    names the argument filled from the field's text; forms list every input
    in ``fields``.
    """

    kind: str
    label: str
    command: str
    args: Dict[str, str] = field(default_factory=dict)
    input_arg: Optional[str] = None
    placeholder: str = ""
    fields: Tuple[str, ...] = ()
    pattern: str = ""
    min_length: int = 0
    secret: bool = False


@dataclass(frozen=True)
class FriendEntry:
    did_key: str
    username: str
    affordance: Optional[Affordance]


@dataclass(frozen=True)
class FriendSection:
    category: str
    heading: str
    entries: Tuple[FriendEntry, ...]


@dataclass(frozen=True)
class MessageLine:
    sender: str
    sender_name: str
    value: str


@dataclass(frozen=True)
class Screen:
    kind: str
    heading: str
    sections: Tuple[FriendSection, ...] = ()
    messages: Tuple[MessageLine, ...] = ()
    affordances: Tuple[Affordance, ...] = ()
    counterparty: str = ""
    chat_id: str = ""
    notice: str = ""


def _back_button() -> Affordance:
    return Affordance(kind="button", label="Back", command=ACTION_BACK)


def _friend_affordance(category: str, did_key: str) -> Optional[Affordance]:
    if category == "all":
        return Affordance(
            kind="button",
            label="Chat",
            command=ACTION_OPEN_CONVERSATION,
            args={"did_key": did_key},
        )
    if category == "incoming_requests":
        return Affordance(
            kind="button",
            label="Accept Request",
            command="send_friend_request_command",
            args={"did_key": did_key},
        )
    return None


def _create_identity_screen(notice: str) -> Screen:
    form = Affordance(
        kind="form",
        label="Create Identity",
        command="create_identity_command",
        fields=("username", "password"),
        pattern=CREDENTIAL_PATTERN,
        min_length=CREDENTIAL_MIN_LENGTH,
    )
    return Screen(kind=SCREEN_CREATE_IDENTITY, heading=CREDENTIAL_HINT, affordances=(form,), notice=notice)


def _login_screen(notice: str) -> Screen:
    password = Affordance(
        kind="field",
        label="Password",
        command="login_command",
        input_arg="password",
        placeholder="Enter Password",
        secret=True,
    )
    return Screen(kind=SCREEN_LOGIN, heading="You need to log in", affordances=(password,), notice=notice)


def _home_screen(snapshot: Snapshot, notice: str) -> Screen:
    sections: List[FriendSection] = []
    for category in FRIEND_CATEGORIES:
        dids = snapshot.friends.category(category)
        if not dids:
            continue
        entries = tuple(
            FriendEntry(
                did_key=did,
                username=resolver.display_name(snapshot, did),
                affordance=_friend_affordance(category, did),
            )
            for did in dids
        )
        sections.append(FriendSection(category=category, heading=SECTION_HEADINGS[category], entries=entries))
    affordances = (
        Affordance(kind="button", label="Delete identity and terminate", command="delete_identity_command"),
        Affordance(kind="button", label="Show own did_key", command="get_own_did_key_command"),
        Affordance(
            kind="field",
            label="Add contact",
            command="send_friend_request_command",
            input_arg="did_key",
            placeholder="Enter did_key to add contact",
        ),
    )
    return Screen(kind=SCREEN_HOME, heading="Contacts", sections=tuple(sections), affordances=affordances, notice=notice)


def _conversation_screen(snapshot: Snapshot, counterparty: str, notice: str) -> Screen:
    resolution = resolver.resolve_conversation(snapshot, counterparty)
    name = resolver.display_name(snapshot, counterparty)
    chat = resolution.chat
    if chat is None:
        first = Affordance(
            kind="field",
            label="Send first message",
            command="send_initial_message_command",
            args={"did_key": counterparty},
            input_arg="message",
            placeholder="Send first message",
        )
        return Screen(
            kind=SCREEN_FIRST_MESSAGE,
            heading=f"Send first message to {name}",
            affordances=(_back_button(), first),
            counterparty=counterparty,
            notice=notice,
        )
    messages = tuple(
        MessageLine(sender=message.sender, sender_name=resolver.display_name(snapshot, message.sender), value=message.value)
        for message in chat.messages
    )
    send = Affordance(
        kind="field",
        label="Send message",
        command="send_message_command",
        args={"conv_id": chat.id},
        input_arg="message",
        placeholder="Send message",
    )
    return Screen(
        kind=SCREEN_CONVERSATION,
        heading=f"Chat with {name}",
        messages=messages,
        affordances=(_back_button(), send),
        counterparty=counterparty,
        chat_id=chat.id,
        notice=notice,
    )


def project(snapshot: Snapshot, navigation: Navigation, notice: str = "") -> Screen:
    if not snapshot.identity_exists:
        return _create_identity_screen(notice)
    if not snapshot.logged_in:
        return _login_screen(notice)
    if isinstance(navigation, Conversation):
        return _conversation_screen(snapshot, navigation.counterparty, notice)
    return _home_screen(snapshot, notice)


def screen_lines(screen: Screen) -> List[str]:
    """Flatten a screen into plain text lines for logs and the offline CLI."""

    lines = [f"[{screen.kind}] {screen.heading}"]
    if screen.notice:
        lines.append(f"! {screen.notice}")
    for section in screen.sections:
        lines.append(section.heading)
        for entry in section.entries:
            suffix = f" ({entry.affordance.label})" if entry.affordance is not None else ""
            lines.append(f"  - {entry.username} <{entry.did_key}>{suffix}")
    for message in screen.messages:
        lines.append(f"{message.sender_name}: {message.value}")
    for affordance in screen.affordances:
        if affordance.kind == "button":
            lines.append(f"[{affordance.label}]")
        elif affordance.kind == "form":
            lines.append(f"[{affordance.label}: {', '.join(affordance.fields)}]")
        else:
            lines.append(f"[{affordance.label}: {affordance.placeholder}]")
    return lines
