import hashlib
from typing import Protocol, Tuple


class CredentialsProvider(Protocol):
    def get_credentials(self, customer_group: str) -> Tuple[str, str]:
        """Return ``(username, password)`` of the account representing ``customer_group``."""
        ...


class PreconfiguredCredentialsProvider:
    """Warm-up accounts provisioned up front, one per customer group.

    The username is derived from the group, the password is shared and comes
    from configuration.
    """

    DOMAIN_SUFFIX = ".wu.magesuite.io"

    def __init__(self, password: str, domain: str, domain_suffix: str = DOMAIN_SUFFIX) -> None:
        self.password = password
        self.domain = domain
        self.domain_suffix = domain_suffix

    def _username(self, customer_group: str) -> str:
        digest = hashlib.md5(str(customer_group).encode("utf-8")).hexdigest()
        return f"{digest}@{self.domain}{self.domain_suffix}"

    def get_credentials(self, customer_group: str) -> Tuple[str, str]:
        return self._username(customer_group), self.password
