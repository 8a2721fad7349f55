"""
Exceptions raised by :py:class:`ldapauth.client.LdapClient`.

Every error the client produces derives from :py:class:`LdapClientError`, so
callers can catch that one class.  python-ldap exceptions are never raised
directly; they are chained as ``__cause__`` of one of these.
"""

from django.core.exceptions import ImproperlyConfigured


class LdapClientError(Exception):
    """Base class for all ldapauth errors."""


class ConfigError(LdapClientError, ImproperlyConfigured):
    """
    The client configuration is incomplete or invalid, e.g. the service
    ``bind_dn`` or ``bind_password`` is empty.  Never retried.
    """


class LdapConnectionError(LdapClientError):
    """
    We could not establish a connection: the dial or TLS handshake failed, the
    CA certificate bytes did not parse, or a client certificate file is missing.
    """


class ConnectionClosedError(LdapConnectionError):
    """
    The server closed the connection again after we had already reconnected
    once during the same bind.
    """


class ProtocolError(LdapClientError):
    """A bind was rejected, or a search failed on the server."""


class IdentityError(LdapClientError):
    """The username did not resolve to exactly one directory entry."""


class UserDoesNotExist(IdentityError):
    """No entry matched the username."""


class TooManyEntries(IdentityError):
    """More than one entry matched the username."""
