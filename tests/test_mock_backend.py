import unittest

from sam_client.backend_client import EVENT_TEST, EVENT_WARP, BackendError
from sam_client.mock_backend import MockBackend
from sam_client.snapshot import REVISION_INLINE, STATE_TUPLE_KEYS, decode_snapshot
from tests.factory import ALICE, BOB


class MockBackendCommandTests(unittest.TestCase):
    def setUp(self):
        self.backend = MockBackend()
        self.backend.handle("create_identity_command", {"username": "myself", "password": "pass1234"})
        self.own = self.backend.own.did_key

    def _code(self, command, args=None):
        with self.assertRaises(BackendError) as ctx:
            self.backend.handle(command, args)
        return ctx.exception.code, ctx.exception.status

    def test_create_identity_rejects_bad_credentials_and_duplicates(self):
        fresh = MockBackend()
        with self.assertRaises(BackendError) as ctx:
            fresh.handle("create_identity_command", {"username": "myself", "password": "p"})
        self.assertEqual(ctx.exception.code, "invalid_request")
        self.assertIsNone(fresh.own)

        self.assertEqual(
            self._code("create_identity_command", {"username": "other", "password": "pass1234"}),
            ("identity_exists", 409),
        )

    def test_login_checks_password(self):
        self.backend.logged_in = False

        self.assertEqual(self._code("login_command", {"password": "nope"}), ("invalid_password", 403))
        self.assertFalse(self.backend.logged_in)
        snapshot = decode_snapshot(self.backend.handle("login_command", {"password": "pass1234"}))
        self.assertTrue(snapshot.logged_in)

    def test_login_without_identity(self):
        fresh = MockBackend()
        with self.assertRaises(BackendError) as ctx:
            fresh.handle("login_command", {"password": "pass1234"})
        self.assertEqual(ctx.exception.code, "identity_missing")

    def test_unknown_command(self):
        self.assertEqual(self._code("format_disk_command"), ("unknown_command", 404))

    def test_friend_request_lifecycle(self):
        self.backend.handle("send_friend_request_command", {"did_key": ALICE})
        self.backend.simulate_incoming_request(BOB, "bob")
        snapshot = decode_snapshot(self.backend.handle("send_friend_request_command", {"did_key": BOB}))

        self.assertEqual(snapshot.friends.outgoing_requests, (ALICE,))
        self.assertEqual(snapshot.friends.all, (BOB,))
        self.assertEqual(snapshot.friends.incoming_requests, ())

        self.backend.simulate_incoming_request(ALICE, "alice")
        snapshot = self.backend.snapshot()
        self.assertEqual(snapshot.friends.all, (BOB, ALICE))
        self.assertEqual(snapshot.friends.outgoing_requests, ())

    def test_friend_request_validation(self):
        self.assertEqual(self._code("send_friend_request_command", {"did_key": "alice"})[0], "invalid_request")
        self.assertEqual(self._code("send_friend_request_command", {"did_key": self.own})[0], "invalid_request")
        self.backend.logged_in = False
        self.assertEqual(self._code("send_friend_request_command", {"did_key": ALICE})[0], "not_logged_in")

    def test_messages(self):
        self.backend.handle("send_initial_message_command", {"did_key": ALICE, "message": "hi"})
        self.backend.handle("send_initial_message_command", {"did_key": ALICE, "message": "again"})
        snapshot = self.backend.snapshot()

        self.assertEqual(len(snapshot.chats), 1)
        chat = next(iter(snapshot.chats.values()))
        self.assertEqual(chat.participants, (self.own, ALICE))
        self.backend.handle("send_message_command", {"conv_id": chat.id, "message": "third"})
        values = [message.value for message in self.backend.snapshot().chats[chat.id].messages]
        self.assertEqual(values, ["hi", "again", "third"])

        self.assertEqual(self._code("send_message_command", {"conv_id": "nope", "message": "x"}), ("not_found", 404))
        self.assertEqual(self._code("send_message_command", {"conv_id": chat.id, "message": ""})[0], "invalid_request")

    def test_incoming_message_lists_peer_first(self):
        chat_id = self.backend.simulate_incoming_message(BOB, "hey")

        chat = self.backend.snapshot().chats[chat_id]
        self.assertEqual(chat.participants, (BOB, self.own))
        self.assertEqual(chat.messages[0].sender, BOB)

    def test_get_own_did_key_and_delete(self):
        self.assertEqual(self.backend.handle("get_own_did_key_command"), self.own)

        snapshot = decode_snapshot(self.backend.handle("delete_identity_command"))

        self.assertFalse(snapshot.identity_exists)
        self.assertEqual(self._code("get_own_did_key_command"), ("identity_missing", 409))

    def test_increment_counter(self):
        self.backend.handle("increment_counter_command", {"step": 5})

        self.assertEqual(self.backend.snapshot().counter, 5)
        self.assertEqual(self._code("increment_counter_command", {"step": "5"})[0], "invalid_request")


class MockBackendPayloadTests(unittest.TestCase):
    def test_revisions_decode_to_the_same_state(self):
        backend = MockBackend()
        backend.handle("create_identity_command", {"username": "myself", "password": "pass1234"})
        backend.handle("send_initial_message_command", {"did_key": ALICE, "message": "hi"})
        backend.simulate_incoming_request(BOB, "bob")

        directory = backend.payload()
        backend.revision = REVISION_INLINE
        inline = backend.payload()
        backend.positional = True
        positional = backend.payload()

        self.assertIn("identities", directory)
        self.assertNotIn("identities", inline)
        self.assertIsInstance(positional, list)
        self.assertEqual(len(positional), len(STATE_TUPLE_KEYS))
        self.assertEqual(decode_snapshot(inline), decode_snapshot(directory))
        self.assertEqual(decode_snapshot(positional), decode_snapshot(directory))

    def test_push_notifies_listeners(self):
        backend = MockBackend()
        received = []
        backend.subscribe(lambda name, payload: received.append((name, payload)))

        backend.push_test_event("ping")
        backend.simulate_friend_accepted(ALICE)

        self.assertEqual(received[0], (EVENT_TEST, "ping"))
        self.assertEqual(received[1][0], EVENT_WARP)
        self.assertEqual(decode_snapshot(received[1][1]).friends.all, (ALICE,))


if __name__ == "__main__":
    unittest.main()
