"""Tests for password storage."""

from __future__ import annotations

import sqlite3
import sys
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from skillswap.database import Database, _hash_password, _verify_password


class PasswordHashingTests(unittest.TestCase):
    def test_hash_and_verify(self) -> None:
        hashed = _hash_password("supersecurepassword")
        self.assertTrue(hashed.startswith("$pbkdf2-sha256$"))
        self.assertTrue(_verify_password("supersecurepassword", hashed))
        self.assertFalse(_verify_password("incorrect", hashed))

    def test_hashes_are_salted(self) -> None:
        self.assertNotEqual(_hash_password("same-password"), _hash_password("same-password"))

    def test_unrecognised_hash_does_not_verify(self) -> None:
        self.assertFalse(_verify_password("anything", "not-a-hash"))

    def test_plaintext_is_never_stored(self) -> None:
        with TemporaryDirectory() as tmpdir:
            database = Database(Path(tmpdir) / "skillswap.sqlite3")
            database.initialize()
            user = database.create_user("Alice", "alice@example.com", "supersecurepassword")

            with sqlite3.connect(database.path) as conn:
                stored = conn.execute("SELECT password_hash FROM users WHERE id = ?", (user.id,)).fetchone()[0]
            self.assertNotIn("supersecurepassword", stored)

            database.set_user_password(user.id, "brand-new-password")
            self.assertIsNone(database.authenticate_user("alice@example.com", "supersecurepassword"))
            refreshed = database.authenticate_user("alice@example.com", "brand-new-password")
            self.assertIsNotNone(refreshed)
            self.assertEqual(refreshed.id, user.id)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
