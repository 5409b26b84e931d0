import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Union

from snowflake_api.auth.common import AuthType
from snowflake_api.auth.keypair import Credential, generate_jwt_token

logger = logging.getLogger(__name__)

CredentialFactory = Callable[[], Credential]


class AuthProvider:
    """Contributes the credential fields of a login request.

    Providers are asked for fresh credentials on every login handshake; the session
    token the service hands back is managed by the session manager, not here.
    """

    authenticator: Optional[str] = None

    def add_login_fields(self, login_data: Dict[str, Any]):
        if self.authenticator:
            login_data["AUTHENTICATOR"] = self.authenticator


class KeyPairAuthProvider(AuthProvider):
    authenticator = AuthType.KEY_PAIR.value

    def __init__(
        self,
        account_identifier: str,
        user: str,
        private_key: Union[str, bytes],
        private_key_password: Optional[Union[str, bytes]] = None,
        lifetime_secs: int = 59 * 60,
        credential_factory: Optional[CredentialFactory] = None,
    ):
        self.account_identifier = account_identifier
        self.user = user
        self._private_key = private_key
        self._private_key_password = private_key_password
        self._lifetime = timedelta(seconds=lifetime_secs)
        self._credential_factory = credential_factory or self._generate

    def _generate(self) -> Credential:
        return generate_jwt_token(
            self._private_key,
            self.account_identifier,
            self.user,
            lifetime=self._lifetime,
            private_key_password=self._private_key_password,
        )

    def add_login_fields(self, login_data: Dict[str, Any]):
        super().add_login_fields(login_data)
        credential = self._credential_factory()
        login_data["TOKEN"] = credential.token


class PasswordAuthProvider(AuthProvider):
    def __init__(self, password: str):
        self.__password = password

    def add_login_fields(self, login_data: Dict[str, Any]):
        super().add_login_fields(login_data)
        login_data["PASSWORD"] = self.__password


class OAuthAuthProvider(AuthProvider):
    authenticator = AuthType.OAUTH.value

    def __init__(self, access_token: str):
        self.__access_token = access_token

    def add_login_fields(self, login_data: Dict[str, Any]):
        super().add_login_fields(login_data)
        login_data["TOKEN"] = self.__access_token


def get_auth_provider(cfg) -> AuthProvider:
    """Pick the auth provider matching the settings of a ClientContext."""
    if cfg.auth_type == AuthType.OAUTH.value or (
        cfg.auth_type is None and cfg.oauth_token is not None
    ):
        if cfg.oauth_token is None:
            raise ValueError("OAuth authentication requires oauth_token")
        return OAuthAuthProvider(cfg.oauth_token)
    elif cfg.private_key is not None:
        if not cfg.user:
            raise ValueError("Key-pair authentication requires user")
        return KeyPairAuthProvider(
            cfg.account_identifier,
            cfg.user,
            cfg.private_key,
            private_key_password=cfg.private_key_password,
            lifetime_secs=cfg.jwt_lifetime_secs,
        )
    elif cfg.password is not None:
        return PasswordAuthProvider(cfg.password)
    else:
        raise ValueError("No valid authentication settings!")
