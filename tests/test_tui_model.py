import unittest

from sam_client.navigation import HOME, Conversation
from sam_client.projector import ACTION_BACK, ACTION_OPEN_CONVERSATION, project
from sam_client.tui_model import ACTION_QUIT, TARGET_BUTTON, TARGET_INPUT, Action, TuiModel, build_targets
from tests.factory import ALICE, BOB, ME, make_chat, make_snapshot


def _type(model: TuiModel, text: str) -> None:
    for ch in text:
        model.handle_key("CHAR", ch)


class TuiModelTests(unittest.TestCase):
    def _model(self, navigation=HOME, **snapshot_kwargs) -> TuiModel:
        return TuiModel(project(make_snapshot(**snapshot_kwargs), navigation))

    def test_home_targets_list_friend_buttons_before_global_actions(self):
        screen = project(make_snapshot(friends=[ALICE], incoming=[BOB]), HOME)

        targets = build_targets(screen)

        self.assertEqual(
            [target.label for target in targets],
            ["Chat: alice", "Accept Request: bob", "Delete identity and terminate", "Show own did_key", "Add contact"],
        )
        self.assertEqual(targets[-1].kind, TARGET_INPUT)
        self.assertEqual({target.kind for target in targets[:-1]}, {TARGET_BUTTON})

    def test_focus_starts_on_first_input_and_wraps(self):
        model = self._model(friends=[ALICE])
        self.assertEqual(model.focused().label, "Add contact")

        model.handle_key("TAB")
        self.assertEqual(model.focused().label, "Chat: alice")

        model.handle_key("SHIFT_TAB")
        self.assertEqual(model.focused().label, "Add contact")

    def test_chat_button_opens_conversation(self):
        model = self._model(friends=[ALICE])
        model.handle_key("DOWN")

        action = model.handle_key("ENTER")

        self.assertEqual(action, Action(command=ACTION_OPEN_CONVERSATION, args={"did_key": ALICE}))

    def test_add_contact_validates_and_strips_did_key(self):
        model = self._model()
        _type(model, "alice")

        self.assertIsNone(model.handle_key("ENTER"))
        self.assertTrue(model.render().status_line.startswith("did_key_invalid"))

        model.handle_key("DELETE")
        model.append_text(f" {BOB} ")
        action = model.handle_key("ENTER")

        self.assertEqual(action, Action(command="send_friend_request_command", args={"did_key": BOB}))
        self.assertEqual(model.render().status_line, "")
        self.assertEqual(model.render().buffers[model.focused().key], "")

    def test_create_identity_form_walks_fields_then_submits(self):
        model = self._model(identity_exists=False)
        _type(model, "alice")

        self.assertIsNone(model.handle_key("ENTER"))
        self.assertEqual(model.focused().field_name, "password")
        _type(model, "pw")
        self.assertIsNone(model.handle_key("ENTER"))
        self.assertTrue(model.status_line.startswith("password_too_short"))

        _type(model, "12345")
        action = model.handle_key("ENTER")

        self.assertEqual(
            action,
            Action(command="create_identity_command", args={"username": "alice", "password": "pw12345"}),
        )

    def test_password_is_masked_in_render(self):
        model = self._model(logged_in=False)
        _type(model, "secret")

        state = model.render()

        self.assertEqual(state.buffers[model.focused().key], "******")
        self.assertEqual(model.handle_key("ENTER"), Action(command="login_command", args={"password": "secret"}))

    def test_empty_login_is_not_submitted(self):
        model = self._model(logged_in=False)

        self.assertIsNone(model.handle_key("ENTER"))
        self.assertTrue(model.status_line.startswith("password_empty"))

    def test_backspace_edits_focused_input(self):
        model = self._model(logged_in=False)
        _type(model, "abc")
        model.handle_key("BACKSPACE")

        self.assertEqual(model.handle_key("ENTER").args, {"password": "ab"})

    def test_escape_goes_back_only_from_conversations(self):
        home = self._model(friends=[ALICE])
        chat = self._model(navigation=Conversation(ALICE), friends=[ALICE])

        self.assertIsNone(home.handle_key("ESC"))
        self.assertEqual(chat.handle_key("ESC"), Action(command=ACTION_BACK))

    def test_conversation_message_field_sends_to_chat(self):
        model = self._model(
            navigation=Conversation(ALICE),
            friends=[ALICE],
            chats=[make_chat("c1", [ME, ALICE], [(ALICE, "hi")])],
        )
        self.assertIsNone(model.handle_key("ENTER"))
        self.assertTrue(model.status_line.startswith("message_empty"))

        _type(model, "hello")
        action = model.handle_key("ENTER")

        self.assertEqual(action, Action(command="send_message_command", args={"conv_id": "c1", "message": "hello"}))

    def test_quit_keys(self):
        model = self._model()

        self.assertEqual(model.handle_key("CTRL_Q"), Action(command=ACTION_QUIT))
        self.assertEqual(model.handle_key("CTRL_C"), Action(command=ACTION_QUIT))

    def test_set_screen_keeps_focus_and_buffers_on_same_screen(self):
        model = self._model(friends=[ALICE])
        _type(model, "did:key:")

        model.set_screen(project(make_snapshot(friends=[ALICE], incoming=[BOB]), HOME))

        self.assertEqual(model.focused().label, "Add contact")
        self.assertEqual(model.render().buffers[model.focused().key], "did:key:")

    def test_set_screen_resets_on_screen_change(self):
        model = self._model(friends=[ALICE])
        _type(model, "did:key:")

        model.set_screen(project(make_snapshot(friends=[ALICE]), Conversation(ALICE)))

        self.assertEqual(model.buffers, {})
        self.assertEqual(model.focused().kind, TARGET_INPUT)


if __name__ == "__main__":
    unittest.main()
