from .client import AuthResult, LdapClient  # noqa: F401
from .config import LdapConfig  # noqa: F401
from .exceptions import (  # noqa: F401
    ConfigError,
    ConnectionClosedError,
    IdentityError,
    LdapClientError,
    LdapConnectionError,
    ProtocolError,
    TooManyEntries,
    UserDoesNotExist,
)

__version__ = "1.0.0"
