"""
Token class for session and master tokens with expiry handling.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional


class Token:
    """
    Represents a token issued by the service together with its expiry.

    The value is opaque to the connector; only its lifetime is inspected.
    """

    def __init__(self, value: str, expiry: datetime):
        """
        Args:
            value: The token string
            expiry: Token expiry datetime. Naive values are taken as UTC.
        """
        self.value = value

        if expiry.tzinfo is None:
            self.expiry = expiry.replace(tzinfo=timezone.utc)
        else:
            self.expiry = expiry

    @classmethod
    def from_validity(
        cls, value: str, validity_secs: int, now: Optional[datetime] = None
    ) -> "Token":
        """Build a token that expires ``validity_secs`` seconds after ``now``."""
        now = now or datetime.now(tz=timezone.utc)
        return cls(value, now + timedelta(seconds=validity_secs))

    def seconds_remaining(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(tz=timezone.utc)
        return (self.expiry - now).total_seconds()

    def is_valid(self, buffer_secs: float = 0, now: Optional[datetime] = None) -> bool:
        """True if the token has more than ``buffer_secs`` seconds of validity left."""
        return self.seconds_remaining(now) > buffer_secs

    def __str__(self) -> str:
        return 'Snowflake Token="{}"'.format(self.value)

    def __repr__(self) -> str:
        return "Token(expiry={})".format(self.expiry.isoformat())
