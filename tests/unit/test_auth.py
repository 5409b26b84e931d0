import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from snowflake_api.auth.authenticators import (
    AuthProvider,
    KeyPairAuthProvider,
    OAuthAuthProvider,
    PasswordAuthProvider,
    get_auth_provider,
)
from snowflake_api.auth.common import AuthType, ClientContext
from snowflake_api.auth.keypair import Credential
from snowflake_api.auth.token import Token

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class Auth(unittest.TestCase):
    def test_password_auth_provider(self):
        auth = PasswordAuthProvider("s3cret")

        login_data = {"LOGIN_NAME": "u"}
        auth.add_login_fields(login_data)
        self.assertEqual(login_data, {"LOGIN_NAME": "u", "PASSWORD": "s3cret"})

    def test_oauth_auth_provider(self):
        auth = OAuthAuthProvider("access-token")

        login_data = {}
        auth.add_login_fields(login_data)
        self.assertEqual(login_data["AUTHENTICATOR"], "OAUTH")
        self.assertEqual(login_data["TOKEN"], "access-token")

    def test_noop_auth_provider(self):
        login_data = {"myKey": "myVal"}
        AuthProvider().add_login_fields(login_data)
        self.assertEqual(login_data, {"myKey": "myVal"})

    def test_key_pair_provider_signs_a_fresh_token_per_login(self):
        tokens = iter(["jwt-1", "jwt-2"])
        factory = MagicMock(
            side_effect=lambda: Credential(next(tokens), NOW + timedelta(hours=1))
        )
        auth = KeyPairAuthProvider("acct", "u", b"unused", credential_factory=factory)

        first, second = {}, {}
        auth.add_login_fields(first)
        auth.add_login_fields(second)

        self.assertEqual(first["AUTHENTICATOR"], AuthType.KEY_PAIR.value)
        self.assertEqual(first["TOKEN"], "jwt-1")
        self.assertEqual(second["TOKEN"], "jwt-2")
        self.assertEqual(factory.call_count, 2)

    def test_get_auth_provider(self):
        cases = [
            (dict(password="p"), PasswordAuthProvider),
            (dict(oauth_token="t"), OAuthAuthProvider),
            (dict(user="u", private_key=b"pem"), KeyPairAuthProvider),
            (dict(user="u", private_key=b"pem", oauth_token="t"), OAuthAuthProvider),
        ]
        for kwargs, expected in cases:
            with self.subTest(kwargs=kwargs):
                provider = get_auth_provider(ClientContext("acct", **kwargs))
                self.assertIsInstance(provider, expected)

    def test_explicit_auth_type(self):
        context = ClientContext(
            "acct", user="u", private_key=b"pem", auth_type="SNOWFLAKE_JWT"
        )
        self.assertIsInstance(get_auth_provider(context), KeyPairAuthProvider)

    def test_get_auth_provider_rejects_incomplete_settings(self):
        for kwargs in [
            dict(),
            dict(private_key=b"pem"),
            dict(auth_type="OAUTH", password="p"),
        ]:
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ValueError):
                    get_auth_provider(ClientContext("acct", **kwargs))

    def test_jwt_lifetime_is_passed_to_provider(self):
        context = ClientContext(
            "acct", user="u", private_key=b"pem", jwt_lifetime_secs=600
        )
        provider = get_auth_provider(context)
        self.assertEqual(provider._lifetime, timedelta(seconds=600))


class TokenTests(unittest.TestCase):
    def test_naive_expiry_is_utc(self):
        token = Token("t", datetime(2024, 5, 1, 13, 0, 0))
        self.assertEqual(token.expiry, NOW + timedelta(hours=1))

    def test_from_validity(self):
        token = Token.from_validity("t", 3600, now=NOW)
        self.assertEqual(token.seconds_remaining(NOW), 3600)

    def test_is_valid_with_buffer(self):
        token = Token.from_validity("t", 3600, now=NOW)

        self.assertTrue(token.is_valid(now=NOW))
        self.assertTrue(token.is_valid(buffer_secs=60, now=NOW + timedelta(minutes=58)))
        self.assertFalse(
            token.is_valid(buffer_secs=60, now=NOW + timedelta(minutes=59, seconds=1))
        )
        self.assertFalse(token.is_valid(now=NOW + timedelta(hours=2)))

    def test_str_is_authorization_value(self):
        self.assertEqual(str(Token("abc", NOW)), 'Snowflake Token="abc"')
        self.assertNotIn("abc", repr(Token("abc", NOW)))
