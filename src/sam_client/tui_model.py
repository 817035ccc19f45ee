"""Pure-Python input state machine for the curses front end.

The model never talks to the backend. It tracks focus and text buffers over
the affordances of the currently projected ``Screen`` and turns key presses
into ``Action`` values that the app hands to the dispatcher.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sam_client.projector import ACTION_BACK, SCREEN_CONVERSATION, SCREEN_FIRST_MESSAGE, Affordance, Screen
from sam_client.validation import validate_credential, validate_did_key

ACTION_QUIT = "quit"
TARGET_INPUT = "input"
TARGET_BUTTON = "button"


@dataclass(frozen=True)
class Action:
    command: str
    args: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Target:
    kind: str
    label: str
    affordance: Affordance
    field_name: str = ""

    @property
    def key(self) -> str:
        suffix = ",".join(f"{k}={v}" for k, v in sorted(self.affordance.args.items()))
        return f"{self.affordance.command}[{suffix}]:{self.kind}:{self.field_name}"


@dataclass
class RenderState:
    screen: Screen
    targets: List[Target]
    focus: int
    buffers: Dict[str, str]
    status_line: str


def build_targets(screen: Screen) -> List[Target]:
    targets: List[Target] = []
    for section in screen.sections:
        for entry in section.entries:
            if entry.affordance is not None:
                targets.append(
                    Target(kind=TARGET_BUTTON, label=f"{entry.affordance.label}: {entry.username}", affordance=entry.affordance)
                )
    for affordance in screen.affordances:
        if affordance.kind == "form":
            for name in affordance.fields:
                targets.append(Target(kind=TARGET_INPUT, label=name, affordance=affordance, field_name=name))
            targets.append(Target(kind=TARGET_BUTTON, label=affordance.label, affordance=affordance))
        elif affordance.kind == "field":
            targets.append(
                Target(
                    kind=TARGET_INPUT,
                    label=affordance.label,
                    affordance=affordance,
                    field_name=affordance.input_arg or "value",
                )
            )
        else:
            targets.append(Target(kind=TARGET_BUTTON, label=affordance.label, affordance=affordance))
    return targets


def _input_error(affordance: Affordance, arg: str, value: str) -> str:
    if affordance.min_length or affordance.pattern:
        return validate_credential(arg, value)
    if arg == "did_key":
        return validate_did_key(value)
    if arg == "message" and not value:
        return "message_empty: type a message first"
    if arg == "password" and not value:
        return "password_empty: enter your password"
    return ""


class TuiModel:
    """Focus and text-buffer state backing the curses TUI."""

    def __init__(self, screen: Screen) -> None:
        self.screen = screen
        self.targets: List[Target] = build_targets(screen)
        self.focus = self._first_input_index()
        self.buffers: Dict[str, str] = {}
        self.status_line = ""

    def _first_input_index(self) -> int:
        for idx, target in enumerate(self.targets):
            if target.kind == TARGET_INPUT:
                return idx
        return 0

    def set_screen(self, screen: Screen) -> None:
        """Swap in a freshly projected screen, keeping focus where it still applies."""

        previous_key = self.focused().key if self.focused() is not None else None
        kind_changed = screen.kind != self.screen.kind or screen.counterparty != self.screen.counterparty
        self.screen = screen
        self.targets = build_targets(screen)
        if kind_changed:
            self.buffers = {}
            self.focus = self._first_input_index()
            return
        keys = [target.key for target in self.targets]
        if previous_key in keys:
            self.focus = keys.index(previous_key)
        else:
            self.focus = max(0, min(self.focus, len(self.targets) - 1))

    def focused(self) -> Optional[Target]:
        if not self.targets:
            return None
        return self.targets[self.focus]

    def set_status(self, text: str) -> None:
        self.status_line = text

    def focus_next(self) -> None:
        if self.targets:
            self.focus = (self.focus + 1) % len(self.targets)

    def focus_prev(self) -> None:
        if self.targets:
            self.focus = (self.focus - 1) % len(self.targets)

    def _buffer(self, target: Target) -> str:
        return self.buffers.get(target.key, "")

    def _form_values(self, affordance: Affordance) -> Tuple[Dict[str, str], str]:
        values: Dict[str, str] = {}
        for target in self.targets:
            if target.affordance is affordance and target.kind == TARGET_INPUT:
                values[target.field_name] = self._buffer(target)
        for name in affordance.fields:
            error = _input_error(affordance, name, values.get(name, ""))
            if error:
                return values, error
        return values, ""

    def _clear_affordance(self, affordance: Affordance) -> None:
        for target in self.targets:
            if target.affordance is affordance:
                self.buffers.pop(target.key, None)

    def _activate(self, target: Target) -> Optional[Action]:
        affordance = target.affordance
        if affordance.kind == "form":
            if target.kind == TARGET_INPUT and target.field_name != affordance.fields[-1]:
                self.focus_next()
                return None
            values, error = self._form_values(affordance)
            if error:
                self.status_line = error
                return None
            self.status_line = ""
            return Action(command=affordance.command, args={**affordance.args, **values})
        if target.kind == TARGET_INPUT:
            arg = affordance.input_arg or "value"
            value = self._buffer(target)
            if arg == "did_key":
                value = value.strip()
            error = _input_error(affordance, arg, value)
            if error:
                self.status_line = error
                return None
            self.status_line = ""
            self._clear_affordance(affordance)
            return Action(command=affordance.command, args={**affordance.args, arg: value})
        self.status_line = ""
        return Action(command=affordance.command, args=dict(affordance.args))

    def handle_key(self, key: str, char: Optional[str] = None) -> Optional[Action]:
        """Handle a normalized key and return an action when one is triggered."""

        if key in {"CTRL_Q", "CTRL_C"}:
            return Action(command=ACTION_QUIT)
        if key == "ESC":
            if self.screen.kind in {SCREEN_CONVERSATION, SCREEN_FIRST_MESSAGE}:
                return Action(command=ACTION_BACK)
            return None
        if key in {"TAB", "DOWN"}:
            self.focus_next()
            return None
        if key in {"SHIFT_TAB", "UP"}:
            self.focus_prev()
            return None
        target = self.focused()
        if target is None:
            return None
        if key == "ENTER":
            return self._activate(target)
        if target.kind != TARGET_INPUT:
            return None
        if key == "BACKSPACE":
            self.buffers[target.key] = self._buffer(target)[:-1]
        elif key == "DELETE":
            self.buffers[target.key] = ""
        elif char:
            self.buffers[target.key] = self._buffer(target) + char
        return None

    def append_text(self, text: str) -> None:
        """Append pasted text to the focused input in one update."""

        target = self.focused()
        if not text or target is None or target.kind != TARGET_INPUT:
            return
        self.buffers[target.key] = self._buffer(target) + text

    def render(self) -> RenderState:
        buffers: Dict[str, str] = {}
        for target in self.targets:
            if target.kind != TARGET_INPUT:
                continue
            value = self._buffer(target)
            secret = target.affordance.secret or target.field_name == "password"
            buffers[target.key] = "*" * len(value) if secret else value
        return RenderState(
            screen=self.screen,
            targets=list(self.targets),
            focus=self.focus,
            buffers=buffers,
            status_line=self.status_line,
        )
