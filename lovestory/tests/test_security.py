import unittest

from lovestory.security import (
    InvalidTokenError,
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)

SECRET = "test-secret-that-is-long-enough-for-hs256"


class PasswordTests(unittest.TestCase):
    def test_hash_and_verify(self):
        hashed = hash_password("forever-yours")
        self.assertNotEqual(hashed, "forever-yours")
        self.assertTrue(verify_password("forever-yours", hashed))
        self.assertFalse(verify_password("wrong-password", hashed))

    def test_malformed_hash_does_not_verify(self):
        self.assertFalse(verify_password("forever-yours", "not-a-bcrypt-hash"))


class TokenTests(unittest.TestCase):
    def test_round_trip(self):
        token = create_access_token("user-1", SECRET)
        self.assertEqual(decode_access_token(token, SECRET), "user-1")

    def test_wrong_secret_rejected(self):
        token = create_access_token("user-1", SECRET)
        with self.assertRaises(InvalidTokenError):
            decode_access_token(token, SECRET + "-other")

    def test_expired_token_rejected(self):
        token = create_access_token("user-1", SECRET, expires_days=-1)
        with self.assertRaises(InvalidTokenError):
            decode_access_token(token, SECRET)

    def test_garbage_rejected(self):
        with self.assertRaises(InvalidTokenError):
            decode_access_token("not.a.token", SECRET)


if __name__ == "__main__":
    unittest.main()
