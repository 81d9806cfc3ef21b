"""
Tests for the helpers in utils.
"""
import unittest
import sys
import os
import hashlib
import asyncio
from unittest.mock import patch

# Add the parent directory to the path so we can import the application modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from exceptions import CircuitOpenError, QuotaExceededError, UpstreamUnavailableError
from utils import CircuitBreaker, RetryableRequest, SecureApiKeyManager, normalize_query, short_hash

from fixtures import http_error


class TestQueryHelpers(unittest.TestCase):

    def test_normalize_query(self):
        self.assertEqual(normalize_query("  Intro   to\tRecursion \n"), "intro to recursion")
        self.assertEqual(normalize_query(""), "")

    def test_short_hash(self):
        expected = hashlib.sha256(b"intro to recursion").hexdigest()[:8]
        self.assertEqual(short_hash("intro to recursion"), expected)
        self.assertEqual(len(short_hash("x", length=12)), 12)


class TestErrorClassification(unittest.TestCase):

    def test_classify_http_error(self):
        self.assertIsInstance(RetryableRequest.classify_http_error(http_error(403, "quotaExceeded"), "op"),
                              QuotaExceededError)
        upstream = RetryableRequest.classify_http_error(http_error(502), "op")
        self.assertIsInstance(upstream, UpstreamUnavailableError)
        self.assertEqual(upstream.status_code, 502)

    def test_retryable(self):
        self.assertTrue(RetryableRequest._is_retryable(UpstreamUnavailableError("x", status_code=503)))
        self.assertFalse(RetryableRequest._is_retryable(UpstreamUnavailableError("x", status_code=400)))
        self.assertFalse(RetryableRequest._is_retryable(QuotaExceededError("x")))


class TestCircuitBreaker(unittest.IsolatedAsyncioTestCase):

    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker(name="test", failure_threshold=2, reset_timeout=300)

        async def failing():
            raise UpstreamUnavailableError("down")

        for _ in range(2):
            with self.assertRaises(UpstreamUnavailableError):
                await breaker(failing)

        self.assertEqual(breaker.state, CircuitBreaker.STATE_OPEN)
        with self.assertRaises(CircuitOpenError):
            await breaker(failing)

    async def test_quota_errors_do_not_open(self):
        breaker = CircuitBreaker(name="test", failure_threshold=1)

        async def quota():
            raise QuotaExceededError("spent")

        with self.assertRaises(QuotaExceededError):
            await breaker(quota)
        self.assertEqual(breaker.state, CircuitBreaker.STATE_CLOSED)

    async def test_cancelled_trial_calls_release_their_slot(self):
        breaker = CircuitBreaker(name="test", failure_threshold=1, reset_timeout=0,
                                 half_open_max_requests=3)

        async def failing():
            raise UpstreamUnavailableError("down")

        async def hang():
            await asyncio.sleep(10)

        async def ok():
            return "ok"

        with self.assertRaises(UpstreamUnavailableError):
            await breaker(failing)
        await asyncio.sleep(0.01)

        # Deadlines cancel trial calls in the half-open state
        for _ in range(3):
            with self.assertRaises(asyncio.TimeoutError):
                await asyncio.wait_for(breaker(hang), 0.01)

        results = [await breaker(ok) for _ in range(3)]
        self.assertEqual(results, ["ok", "ok", "ok"])
        self.assertEqual(breaker.state, CircuitBreaker.STATE_CLOSED)


KEY_ENV = {
    "YOUTUBE_API_KEY": "AIzaPlainFallbackKey0000000000000000",
    "YOUTUBE_API_KEY_SALT": "test-salt",
    "YOUTUBE_API_KEY_PASSWORD": "test-password",
}


class TestSecureApiKeyManager(unittest.TestCase):
    """Encrypted key handling."""

    def test_encrypted_key_is_decrypted(self):
        with patch.dict(os.environ, KEY_ENV):
            token = SecureApiKeyManager().encrypt_key("AIzaSecretKey1111111111111111111111")
            manager = SecureApiKeyManager(encrypted_key=token)
            self.assertTrue(manager.encryption_available)
            self.assertEqual(manager.get_key(), "AIzaSecretKey1111111111111111111111")

    def test_bad_token_falls_back_to_plain_key(self):
        with patch.dict(os.environ, KEY_ENV):
            manager = SecureApiKeyManager(encrypted_key="bm90LWEtdG9rZW4=")
            self.assertEqual(manager.get_key(), KEY_ENV["YOUTUBE_API_KEY"])

    def test_token_without_password_uses_plain_key(self):
        env = {"YOUTUBE_API_KEY": "AIzaPlain", "YOUTUBE_API_KEY_SALT": "", "YOUTUBE_API_KEY_PASSWORD": ""}
        with patch.dict(os.environ, env):
            manager = SecureApiKeyManager(encrypted_key="c29tZXRoaW5n")
            self.assertFalse(manager.encryption_available)
            self.assertIsNone(manager.encrypt_key("AIzaPlain"))
            self.assertEqual(manager.get_key(), "AIzaPlain")

    def test_obfuscate(self):
        manager = SecureApiKeyManager()
        self.assertEqual(manager.obfuscate_key("AIzaSecretKey123"), "AIza...123")
        self.assertEqual(manager.obfuscate_key(""), "[MISSING]")


if __name__ == '__main__':
    unittest.main()
