"""
LDAP client configuration.

This module provides :py:class:`LdapConfig`, the immutable set of connection,
service identity and search parameters an :py:class:`ldapauth.client.LdapClient`
is built from.  A config can be constructed directly or loaded from the
``LDAP_SERVERS`` Django setting with :py:meth:`LdapConfig.from_settings`.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from django.conf import settings

from .exceptions import ConfigError, LdapClientError
from .typing import ClientCertificate

#: The values allowed for the ``tls_verify`` key in ``settings.LDAP_SERVERS``
TLS_VERIFY_CHOICES = ("never", "always")


@dataclass(frozen=True)
class LdapConfig:
    """
    Connection and search parameters for one LDAP server.

    Keyword Args:
        host: hostname of the LDAP server; also the TLS server name
        port: TCP port of the LDAP server
        use_ssl: connect with ``ldaps://`` instead of ``ldap://``
        insecure_skip_verify: don't verify the server certificate
        ca_certificates: raw PEM bytes of the CA certificates to trust
        client_certificate: ``(certfile, keyfile)`` paths to present during
            the TLS handshake
        bind_dn: DN of the service identity used for lookups
        bind_password: password of the service identity
        base: the DN under which users are searched for
        user_filter: search filter template with one ``%s`` slot for the
            username, e.g. ``(uid=%s)``
        group_filter: filter template for group lookups, e.g.
            ``(memberUid=%s)``.  Reserved; the client does not use it.
        attributes: attribute names to return for an authenticated user
        use_starttls: negotiate StartTLS on a plain ``ldap://`` connection
        timeout: network timeout in seconds, or ``None`` for the library default
        follow_referrals: let python-ldap chase referrals

    """

    host: str = "localhost"
    port: int = 389
    use_ssl: bool = False
    insecure_skip_verify: bool = False
    ca_certificates: bytes | None = None
    client_certificate: ClientCertificate | None = None
    bind_dn: str = ""
    bind_password: str = ""
    base: str = ""
    user_filter: str = "(uid=%s)"
    group_filter: str = ""
    attributes: tuple[str, ...] = ()
    use_starttls: bool = False
    timeout: float | None = None
    follow_referrals: bool = False

    def __post_init__(self) -> None:
        # Accept any iterable of attribute names but store an immutable tuple
        object.__setattr__(self, "attributes", tuple(self.attributes))
        try:
            self.user_filter % ("",)  # noqa: B018
        except (TypeError, ValueError) as e:
            msg = f"user_filter must have exactly one %s slot: {self.user_filter!r}"
            raise ConfigError(msg) from e

    @property
    def url(self) -> str:
        """
        The LDAP URI for our server.

        Returns:
            ``ldaps://host:port`` if :py:attr:`use_ssl` is set, otherwise
            ``ldap://host:port``.

        """
        scheme = "ldaps" if self.use_ssl else "ldap"
        return f"{scheme}://{self.host}:{self.port}"

    @classmethod
    def from_settings(cls, key: str = "default") -> "LdapConfig":
        """
        Build a config from ``settings.LDAP_SERVERS[key]``.

        Example:
            .. code-block:: python

                LDAP_SERVERS = {
                    "default": {
                        "host": "ldap.example.com",
                        "port": 636,
                        "use_ssl": True,
                        "tls_verify": "always",
                        "tls_ca_certfile": "/etc/ssl/certs/ldap-ca.pem",
                        "user": "cn=svc,dc=example,dc=com",
                        "password": "svcpw",
                        "basedn": "dc=example,dc=com",
                        "user_filter": "(uid=%s)",
                        "attributes": ["mail", "cn"],
                    }
                }

        Args:
            key: the name of the server in ``settings.LDAP_SERVERS``

        Raises:
            ConfigError: ``LDAP_SERVERS`` or ``key`` is missing, ``tls_verify``
                is invalid, or a TLS file does not exist

        Returns:
            A new :py:class:`LdapConfig`.

        """
        try:
            config: dict[str, Any] = settings.LDAP_SERVERS[key]
        except AttributeError as e:
            msg = "settings.LDAP_SERVERS does not exist!"
            raise ConfigError(msg) from e
        except KeyError as e:
            msg = f"settings.LDAP_SERVERS has no key '{key}'"
            raise ConfigError(msg) from e

        tls_verify = config.get("tls_verify", "always")
        if tls_verify not in TLS_VERIFY_CHOICES:
            msg = f"Invalid tls_verify value: {tls_verify}"
            raise ConfigError(msg)

        ca_certificates = None
        if tls_ca_certfile := config.get("tls_ca_certfile", None):
            ca_certificates = check_file(tls_ca_certfile, "CA Certificate").read_bytes()

        client_certificate = None
        tls_certfile = config.get("tls_certfile", None)
        tls_keyfile = config.get("tls_keyfile", None)
        if tls_certfile or tls_keyfile:
            if not (tls_certfile and tls_keyfile):
                msg = "tls_certfile and tls_keyfile must be set together"
                raise ConfigError(msg)
            client_certificate = (tls_certfile, tls_keyfile)

        timeout = config.get("timeout", None)
        return cls(
            host=config.get("host", "localhost"),
            port=int(config.get("port", 636 if config.get("use_ssl") else 389)),
            use_ssl=bool(config.get("use_ssl", False)),
            insecure_skip_verify=tls_verify == "never",
            ca_certificates=ca_certificates,
            client_certificate=client_certificate,
            bind_dn=config.get("user", ""),
            bind_password=config.get("password", ""),
            base=config.get("basedn", ""),
            user_filter=config.get("user_filter", "(uid=%s)"),
            group_filter=config.get("group_filter", ""),
            attributes=tuple(config.get("attributes", ())),
            use_starttls=bool(config.get("use_starttls", False)),
            timeout=float(timeout) if timeout is not None else None,
            follow_referrals=bool(config.get("follow_referrals", False)),
        )


def check_file(
    path: str, label: str, exception_class: type[LdapClientError] = ConfigError
) -> Path:
    """
    Raise ``exception_class`` unless ``path`` exists and is a regular file.

    Returns:
        ``path`` as a :py:class:`~pathlib.Path`.

    """
    p = Path(path)
    if not p.exists():
        msg = f"{label} file does not exist: {path}"
        raise exception_class(msg)
    if not p.is_file():
        msg = f"{label} file is not a file: {path}"
        raise exception_class(msg)
    return p
