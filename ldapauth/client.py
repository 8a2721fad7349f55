"""
LDAP authentication client.

This module provides :py:class:`LdapClient`, which owns a single connection to
an LDAP server, keeps it bound as a privileged service identity, and
authenticates users by searching for their entry and re-binding as that entry's
DN with the supplied password.
"""

import logging
import os
import ssl
import tempfile
from collections.abc import Iterator
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ldap.cidict import cidict
from ldap.filter import filter_format

from ldapauth import ldap

from .config import LdapConfig, check_file
from .exceptions import (
    ConfigError,
    ConnectionClosedError,
    LdapClientError,
    LdapConnectionError,
    ProtocolError,
    TooManyEntries,
    UserDoesNotExist,
)
from .typing import Attributes, LDAPData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthResult:
    """
    The outcome of :py:meth:`LdapClient.authenticate`.

    Iterating an :py:class:`AuthResult` yields ``(authenticated, attributes,
    error)``, so it can be unpacked like a 3-tuple.
    """

    #: ``True`` only if the user exists and the password was accepted
    authenticated: bool
    #: One value per configured attribute, or ``None`` if the user could not
    #: be resolved to exactly one entry
    attributes: Attributes | None = None
    #: Why authentication failed, if it did
    error: LdapClientError | None = None
    #: Set if re-binding as the service identity afterwards failed
    restore_error: LdapClientError | None = None

    def __iter__(self) -> Iterator[Any]:
        return iter((self.authenticated, self.attributes, self.error))


class LdapClient:
    """
    A client for authenticating users against an LDAP server.

    The client holds at most one connection at a time.  Between calls that
    connection is bound as the service identity from
    :py:attr:`LdapConfig.bind_dn`; :py:meth:`authenticate` temporarily binds as
    the user being checked and always switches back before returning.

    This class is not thread-safe: both the connection and its bound identity
    are shared, unlocked state.  Use one client per thread, or serialize calls.

    Example:
        .. code-block:: python

            config = LdapConfig(
                host="ldap.example.com",
                bind_dn="cn=svc,dc=example,dc=com",
                bind_password="svcpw",
                base="dc=example,dc=com",
                user_filter="(uid=%s)",
                attributes=("mail",),
            )
            with LdapClient.from_config(config) as client:
                ok, attributes, error = client.authenticate("alice", "hunter2")

    Args:
        config: the server and search configuration

    """

    #: A bind that finds the connection closed reconnects and retries, but only
    #: until this many consecutive disconnects have been seen
    MAX_DISCONNECTS: int = 2
    #: Requested alongside the configured attributes on user searches
    DN_ATTRIBUTE: str = "dn"

    def __init__(self, config: LdapConfig) -> None:
        self.logger = logger
        self.config = config
        self.connection: ldap.ldapobject.LDAPObject | None = None  # type: ignore[name-defined]
        #: Consecutive closed-connection failures seen by the current bind
        self.disconnect_retry_count: int = 0
        self._ca_certfile: Path | None = None

    @classmethod
    def from_config(cls, config: LdapConfig) -> "LdapClient":
        """
        Create a client, connect it and bind as the service identity.

        If either step fails the client is closed before the error propagates,
        so no half-connected client escapes.

        Args:
            config: the server and search configuration

        Raises:
            ConfigError: the service credentials are not set
            LdapConnectionError: we could not connect
            ProtocolError: the service bind was rejected

        Returns:
            A connected, service-bound client.

        """
        client = cls(config)
        try:
            client.connect()
            client.bind()
        except LdapClientError:
            client.close()
            raise
        return client

    @classmethod
    def from_settings(cls, key: str = "default") -> "LdapClient":
        """
        Like :py:meth:`from_config`, reading the configuration from
        ``settings.LDAP_SERVERS[key]``.
        """
        return cls.from_config(LdapConfig.from_settings(key))

    def __enter__(self) -> "LdapClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -----------------------
    # Connection management
    # -----------------------

    @property
    def connected(self) -> bool:
        """``True`` if we currently hold a connection."""
        return self.connection is not None

    def _write_ca_certfile(self, pem: bytes) -> Path:
        """
        Check that ``pem`` holds at least one parseable certificate and write
        it to a private temporary file for ``OPT_X_TLS_CACERTFILE``.

        Raises:
            LdapConnectionError: ``pem`` is not valid PEM certificate data

        """
        try:
            ssl.create_default_context(cadata=pem.decode("ascii"))
        except (ssl.SSLError, ValueError) as e:
            msg = "Could not append CA certs from PEM"
            raise LdapConnectionError(msg) from e
        fd, path = tempfile.mkstemp(prefix="ldapauth-ca-", suffix=".pem")
        with os.fdopen(fd, "wb") as fh:
            fh.write(pem)
        return Path(path)

    def _remove_ca_certfile(self) -> None:
        if self._ca_certfile:
            self._ca_certfile.unlink(missing_ok=True)
            self._ca_certfile = None

    def _check_client_certificate(self) -> None:
        if not self.config.client_certificate:
            return
        for path, label in zip(
            self.config.client_certificate, ("TLS Certificate", "TLS Key"), strict=True
        ):
            check_file(path, label, LdapConnectionError)

    def connect(self) -> None:
        """
        Open a new connection to the server, replacing any we already hold.

        The previous connection is closed first, so even if this fails we never
        hold more than one connection.  TLS material is checked before we
        touch the network.

        An anonymous bind is made to force the dial and any TLS handshake,
        since python-ldap does not open the socket until the first operation.
        Servers that refuse anonymous binds still answered, so that counts as
        connected.

        Note:
            This does not bind as the service identity; call :py:meth:`bind`
            afterwards.

        Raises:
            LdapConnectionError: the CA certificates don't parse, a client
                certificate file is missing, or python-ldap could not
                establish the connection

        """
        self.close()
        config = self.config
        self._check_client_certificate()
        if config.ca_certificates:
            self._ca_certfile = self._write_ca_certfile(config.ca_certificates)

        self.logger.debug("ldapauth.connect url=%s", config.url)
        try:
            ldap_object = ldap.initialize(config.url)
            ldap_object.set_option(ldap.OPT_REFERRALS, 1 if config.follow_referrals else 0)
            ldap_object.set_option(ldap.OPT_DEREF, ldap.DEREF_NEVER)
            if config.timeout is not None:
                ldap_object.set_option(ldap.OPT_NETWORK_TIMEOUT, float(config.timeout))
            if config.insecure_skip_verify:
                ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)
            else:
                ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)
            if self._ca_certfile:
                ldap_object.set_option(ldap.OPT_X_TLS_CACERTFILE, str(self._ca_certfile))
            if config.client_certificate:
                certfile, keyfile = config.client_certificate
                ldap_object.set_option(ldap.OPT_X_TLS_CERTFILE, certfile)
                ldap_object.set_option(ldap.OPT_X_TLS_KEYFILE, keyfile)
            ldap_object.set_option(ldap.OPT_X_TLS_NEWCTX, 0)
            if config.use_starttls and not config.use_ssl:
                ldap_object.start_tls_s()
            with suppress(ldap.INAPPROPRIATE_AUTH, ldap.UNWILLING_TO_PERFORM):
                ldap_object.simple_bind_s("", "")
        except ldap.LDAPError as e:
            self._remove_ca_certfile()
            msg = f"Could not connect to {config.url}: {e}"
            raise LdapConnectionError(msg) from e
        self.connection = ldap_object

    def close(self) -> None:
        """
        Close our connection, if we have one.  Safe to call more than once.
        """
        if self.connection is not None:
            try:
                # The server may already have dropped us
                with suppress(ldap.LDAPError):
                    self.connection.unbind_s()
            finally:
                self.connection = None
        self._remove_ca_certfile()

    # -----------------------
    # Binding
    # -----------------------

    def bind(self) -> None:
        """
        Bind as the service identity.

        If the server has closed our connection, reconnect and try again.  We
        do this at most once per call: a second consecutive disconnect is
        raised as :py:exc:`ConnectionClosedError`.

        Raises:
            ConfigError: ``bind_dn`` or ``bind_password`` is empty
            LdapConnectionError: we have no connection, or reconnecting failed
            ConnectionClosedError: the connection was closed again after we
                reconnected
            ProtocolError: the server rejected the bind

        """
        dn = self.config.bind_dn
        if not (dn and self.config.bind_password):
            msg = "bind_dn or bind_password was not set on client config"
            raise ConfigError(msg)
        self.disconnect_retry_count = 0
        while True:
            if self.connection is None:
                msg = "Not connected to an LDAP server; call connect() first"
                raise LdapConnectionError(msg)
            try:
                self.connection.simple_bind_s(dn, self.config.bind_password)
            except ldap.SERVER_DOWN as e:
                self.disconnect_retry_count += 1
                if self.disconnect_retry_count >= self.MAX_DISCONNECTS:
                    msg = f"LDAP connection to {self.config.url} closed: {e}"
                    raise ConnectionClosedError(msg) from e
                self.logger.info(
                    "ldapauth.bind.reconnect dn=%s attempt=%d",
                    dn,
                    self.disconnect_retry_count,
                )
                self.connect()
            except ldap.LDAPError as e:
                msg = f"Bind as {dn} failed: {e}"
                raise ProtocolError(msg) from e
            else:
                self.disconnect_retry_count = 0
                return

    # -----------------------
    # Authentication
    # -----------------------

    def _search_user(self, username: str) -> list[LDAPData]:
        """
        Search the whole subtree under our base for entries matching
        :py:attr:`LdapConfig.user_filter`, with ``username`` escaped into it.

        Raises:
            ProtocolError: the search failed

        """
        searchfilter = filter_format(self.config.user_filter, [username])
        attrlist = [*self.config.attributes, self.DN_ATTRIBUTE]
        try:
            msgid = self.connection.search_ext(  # type: ignore[union-attr]
                self.config.base,
                ldap.SCOPE_SUBTREE,
                searchfilter,
                attrlist,
                attrsonly=0,
                timeout=-1,
                sizelimit=0,
            )
            _, rdata, _, _ = self.connection.result3(msgid)  # type: ignore[union-attr]
        except ldap.LDAPError as e:
            msg = f"Search for {searchfilter} under {self.config.base} failed: {e}"
            raise ProtocolError(msg) from e
        # AD can append search references, which don't have attribute dicts
        return [(dn, attrs) for dn, attrs in rdata if isinstance(attrs, dict)]

    def _extract_attributes(self, attrs: dict[str, list[bytes]]) -> Attributes:
        attrs = cidict(attrs)
        user: Attributes = {}
        for name in self.config.attributes:
            values = attrs.get(name) or [b""]
            user[name] = values[0].decode("utf-8", errors="replace")
        return user

    def _check_password(self, dn: str, password: str) -> None:
        """
        Bind as ``dn`` to check ``password``.  This never reconnects.

        Raises:
            ProtocolError: the bind failed for any reason

        """
        if not password:
            # An empty password makes this an unauthenticated bind, which
            # servers accept for any DN
            msg = f"Empty password for {dn}"
            raise ProtocolError(msg)
        try:
            self.connection.simple_bind_s(dn, password)  # type: ignore[union-attr]
        except ldap.LDAPError as e:
            msg = f"Bind as {dn} failed: {e}"
            raise ProtocolError(msg) from e

    def _authenticate(self, username: str, password: str) -> AuthResult:
        try:
            entries = self._search_user(username)
        except ProtocolError as e:
            return AuthResult(False, None, e)
        if not entries:
            self.logger.warning("auth.no_such_user user=%s", username)
            return AuthResult(False, None, UserDoesNotExist("User does not exist"))
        if len(entries) > 1:
            self.logger.warning(
                "auth.too_many_entries user=%s count=%d", username, len(entries)
            )
            return AuthResult(False, None, TooManyEntries("Too many entries returned"))

        dn, attrs = entries[0]
        user = self._extract_attributes(attrs)
        try:
            self._check_password(dn, password)
        except ProtocolError as e:
            self.logger.warning("auth.invalid_credentials user=%s", username)
            return AuthResult(False, user, e)
        self.logger.info("auth.success user=%s", username)
        return AuthResult(True, user, None)

    def _restore_service_bind(self) -> LdapClientError | None:
        try:
            self.bind()
        except LdapClientError as e:
            self.logger.warning("auth.restore_bind.failed error=%s", e)
            return e
        return None

    def authenticate(self, username: str, password: str) -> AuthResult:
        """
        Check ``password`` for ``username``.

        We bind as the service identity, search for exactly one entry matching
        ``username``, then bind as that entry's DN with ``password``.  Whatever
        happens after the first bind, we bind as the service identity again
        before returning.

        Errors are returned in the result rather than raised:

        * service bind failed: ``(False, None, error)``
        * search failed: ``(False, None, ProtocolError)``
        * no match: ``(False, None, UserDoesNotExist)``
        * several matches: ``(False, None, TooManyEntries)``
        * wrong password: ``(False, attributes, ProtocolError)``
        * success: ``(True, attributes, None)``

        If the final service re-bind fails, the result above is still returned,
        with :py:attr:`AuthResult.restore_error` set.

        Args:
            username: the username to substitute into the user filter
            password: the password to check

        Returns:
            An :py:class:`AuthResult`.

        """
        try:
            self.bind()
        except LdapClientError as e:
            return AuthResult(False, None, e)
        try:
            result = self._authenticate(username, password)
        finally:
            restore_error = self._restore_service_bind()
        if restore_error is not None:
            return AuthResult(
                result.authenticated, result.attributes, result.error, restore_error
            )
        return result
