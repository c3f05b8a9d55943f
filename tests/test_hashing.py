"""Tests for hash_identifier() - short, deterministic, non-reversible."""

import re

from ispbot.infra.hashing import hash_identifier


class TestHashIdentifier:
    TEST_CHAT = "5511000000001@c.us"

    def test_hash_length_is_12(self):
        assert len(hash_identifier(self.TEST_CHAT)) == 12

    def test_hash_is_hex(self):
        assert re.fullmatch(r"[0-9a-f]{12}", hash_identifier(self.TEST_CHAT))

    def test_hash_is_deterministic(self):
        assert hash_identifier(self.TEST_CHAT) == hash_identifier(self.TEST_CHAT)

    def test_different_chats_differ(self):
        assert hash_identifier(self.TEST_CHAT) != hash_identifier("5511000000002@c.us")
