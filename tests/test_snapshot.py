import unittest

from sam_client.snapshot import (
    REVISION_INLINE,
    STATE_TUPLE_KEYS,
    Friends,
    Identity,
    Message,
    Snapshot,
    SnapshotDecodeError,
    decode_snapshot,
    encode_snapshot,
)
from tests.factory import ALICE, BOB, CAROL, ME, make_chat, make_snapshot


DIRECTORY_PAYLOAD = {
    "identity_exists": True,
    "logged_in": True,
    "identities": {
        ME: {"did_key": ME, "username": "me"},
        ALICE: {"did_key": ALICE, "username": "alice"},
        BOB: {"did_key": BOB, "username": "bob"},
    },
    "friends": {"all": [ALICE], "incoming_requests": [BOB], "outgoing_requests": []},
    "chats": {
        "all": {
            "c1": {
                "id": "c1",
                "participants": [ME, ALICE],
                "messages": [{"sender": ME, "value": "hi"}, {"sender": ALICE, "value": "hey"}],
            }
        }
    },
    "configuration": {"theme": "dark"},
    "counter": 3,
    "account": {"anything": 1},
}

INLINE_PAYLOAD = {
    "identity_exists": True,
    "logged_in": True,
    "friends": {
        "all": {ALICE: {"identity": {"did_key": ALICE, "username": "alice"}}},
        "incoming_requests": [{"identity": {"did_key": BOB, "username": "bob"}}],
        "outgoing_requests": [],
    },
    "chats": {
        "all": {
            "c1": {
                "id": "c1",
                "participants": [
                    {"identity": {"did_key": ME, "username": "me"}},
                    {"identity": {"did_key": ALICE, "username": "alice"}},
                ],
                "messages": [{"sender": ME, "value": ["hi"]}, {"sender": ALICE, "value": ["hey"]}],
            }
        }
    },
    "configuration": {"theme": "dark"},
    "counter": 3,
    "account": {"anything": 1},
}


class DecodeSnapshotTests(unittest.TestCase):
    def test_directory_revision_decodes_canonical_shape(self):
        snapshot = decode_snapshot(DIRECTORY_PAYLOAD)

        self.assertTrue(snapshot.identity_exists)
        self.assertTrue(snapshot.logged_in)
        self.assertEqual(snapshot.friends.all, (ALICE,))
        self.assertEqual(snapshot.friends.incoming_requests, (BOB,))
        self.assertEqual(snapshot.identities[ALICE], Identity(did_key=ALICE, username="alice"))
        chat = snapshot.chats["c1"]
        self.assertEqual(chat.participants, (ME, ALICE))
        self.assertEqual(chat.messages, (Message(sender=ME, value="hi"), Message(sender=ALICE, value="hey")))
        self.assertEqual(snapshot.configuration, {"theme": "dark"})
        self.assertEqual(snapshot.counter, 3)
        self.assertEqual(snapshot.account, {"anything": 1})

    def test_inline_revision_resolves_to_same_logical_state(self):
        inline = decode_snapshot(INLINE_PAYLOAD)
        directory = decode_snapshot(DIRECTORY_PAYLOAD)

        self.assertEqual(inline, directory)

    def test_positional_tuple_is_keyed_by_fixed_field_list(self):
        named = {key: DIRECTORY_PAYLOAD.get(key) for key in STATE_TUPLE_KEYS}
        positional = [named[key] for key in STATE_TUPLE_KEYS]

        snapshot = decode_snapshot(positional)

        self.assertTrue(snapshot.logged_in)
        self.assertEqual(snapshot.counter, 3)
        self.assertEqual(snapshot.friends.all, (ALICE,))
        self.assertEqual(snapshot.chats["c1"].participants, (ME, ALICE))

    def test_short_positional_tuple_defaults_missing_fields(self):
        snapshot = decode_snapshot([None, {"all": {}}])

        self.assertFalse(snapshot.identity_exists)
        self.assertFalse(snapshot.logged_in)
        self.assertEqual(snapshot.chats, {})

    def test_missing_fields_default_safely(self):
        snapshot = decode_snapshot({"identity_exists": True})

        self.assertTrue(snapshot.identity_exists)
        self.assertFalse(snapshot.logged_in)
        self.assertEqual(snapshot.friends, Friends())
        self.assertEqual(snapshot.chats, {})
        self.assertEqual(snapshot.identities, {})
        self.assertEqual(snapshot.counter, 0)

    def test_malformed_nested_fields_are_dropped_not_fatal(self):
        snapshot = decode_snapshot(
            {
                "identity_exists": True,
                "logged_in": "yes",
                "friends": {"all": "not-a-list", "incoming_requests": [42, None, BOB]},
                "chats": {"all": {"c1": "broken", "c2": {"participants": [ME], "messages": [{"value": "x"}]}}},
            }
        )

        self.assertFalse(snapshot.logged_in)
        self.assertEqual(snapshot.friends.all, ())
        self.assertEqual(snapshot.friends.incoming_requests, (BOB,))
        self.assertEqual(list(snapshot.chats), ["c2"])
        self.assertEqual(snapshot.chats["c2"].messages, ())

    def test_unsupported_payload_type_raises(self):
        with self.assertRaises(SnapshotDecodeError):
            decode_snapshot("not a snapshot")
        with self.assertRaises(SnapshotDecodeError):
            decode_snapshot(None)

    def test_overlapping_categories_keep_first_category(self):
        snapshot = decode_snapshot(
            {
                "friends": {
                    "all": [ALICE],
                    "incoming_requests": [ALICE, BOB],
                    "outgoing_requests": [BOB, CAROL],
                }
            }
        )

        self.assertEqual(snapshot.friends.all, (ALICE,))
        self.assertEqual(snapshot.friends.incoming_requests, (BOB,))
        self.assertEqual(snapshot.friends.outgoing_requests, (CAROL,))

    def test_index_keyed_message_body_joins_lines(self):
        snapshot = decode_snapshot(
            {"chats": {"all": {"c1": {"participants": [ME, ALICE], "messages": [{"sender": ALICE, "value": {"1": "b", "0": "a"}}]}}}}
        )

        self.assertEqual(snapshot.chats["c1"].messages[0].value, "a\nb")

    def test_non_decimal_body_keys_are_skipped(self):
        snapshot = decode_snapshot(
            {
                "chats": {
                    "all": {
                        "c1": {
                            "participants": [ME, ALICE],
                            "messages": [
                                {"sender": ALICE, "value": {"²": "sup", "1": "b", "x": "?", "0": "a"}},
                                {"sender": ALICE, "value": {"²": "only"}},
                            ],
                        }
                    }
                }
            }
        )

        values = [message.value for message in snapshot.chats["c1"].messages]
        self.assertEqual(values, ["a\nb", ""])

    def test_directory_entry_wins_over_inline_copy(self):
        snapshot = decode_snapshot(
            {
                "identities": {ALICE: {"did_key": ALICE, "username": "alice-new"}},
                "friends": {"incoming_requests": [{"identity": {"did_key": ALICE, "username": "alice-old"}}]},
            }
        )

        self.assertEqual(snapshot.identities[ALICE].username, "alice-new")

    def test_with_logged_in_returns_copy(self):
        snapshot = make_snapshot()
        logged_out = snapshot.with_logged_in(False)

        self.assertTrue(snapshot.logged_in)
        self.assertFalse(logged_out.logged_in)


class EncodeSnapshotTests(unittest.TestCase):
    def setUp(self) -> None:
        self.snapshot = make_snapshot(
            friends=[ALICE],
            incoming=[BOB],
            chats=[make_chat("c1", [ME, ALICE], [(ME, "hi")])],
            usernames={ME: "me", ALICE: "alice", BOB: "bob"},
        )

    def test_each_revision_decodes_back_to_the_same_snapshot(self):
        for kwargs in ({}, {"revision": REVISION_INLINE}, {"positional": True}):
            with self.subTest(**kwargs):
                self.assertEqual(decode_snapshot(encode_snapshot(self.snapshot, **kwargs)), self.snapshot)

    def test_inline_revision_has_no_directory(self):
        payload = encode_snapshot(self.snapshot, revision=REVISION_INLINE)

        self.assertNotIn("identities", payload)
        self.assertEqual(payload["friends"]["all"][ALICE]["identity"]["username"], "alice")

    def test_unknown_revision_is_rejected(self):
        with self.assertRaises(ValueError):
            encode_snapshot(Snapshot(), revision="v0")


if __name__ == "__main__":
    unittest.main()
