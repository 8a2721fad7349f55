# type: ignore
"""
Tests for LdapConfig, including loading it from ``settings.LDAP_SERVERS``.
"""

import tempfile
import unittest
from dataclasses import FrozenInstanceError
from pathlib import Path

import django
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.test import override_settings

from ldapauth.config import LdapConfig, check_file
from ldapauth.exceptions import ConfigError, LdapConnectionError

if not settings.configured:
    settings.configure()
    try:
        django.setup()
    except Exception:
        pass


class TestLdapConfig(unittest.TestCase):

    def test_url(self):
        self.assertEqual(LdapConfig(host="ldap.example.com").url, "ldap://ldap.example.com:389")
        self.assertEqual(
            LdapConfig(host="ldap.example.com", port=636, use_ssl=True).url,
            "ldaps://ldap.example.com:636",
        )

    def test_attributes_are_stored_as_tuple(self):
        config = LdapConfig(attributes=["mail", "cn"])
        self.assertEqual(config.attributes, ("mail", "cn"))

    def test_user_filter_needs_exactly_one_slot(self):
        for user_filter in ("(uid=alice)", "(|(uid=%s)(mail=%s))", "(uid=%(name)s)"):
            with self.subTest(user_filter=user_filter):
                with self.assertRaises(ConfigError):
                    LdapConfig(user_filter=user_filter)
        self.assertEqual(LdapConfig(user_filter="(mail=%s)").user_filter, "(mail=%s)")

    def test_config_is_immutable(self):
        config = LdapConfig()
        with self.assertRaises(FrozenInstanceError):
            config.host = "other.example.com"


class TestLdapConfigFromSettings(unittest.TestCase):

    def setUp(self):
        super().setUp()
        self.server = {
            "host": "ldap.example.com",
            "port": 636,
            "use_ssl": True,
            "tls_verify": "never",
            "user": "cn=svc,dc=example,dc=com",
            "password": "svcpw",
            "basedn": "dc=example,dc=com",
            "user_filter": "(uid=%s)",
            "group_filter": "(memberUid=%s)",
            "attributes": ["mail", "cn"],
            "timeout": 15,
            "follow_referrals": False,
        }

    def test_keys_are_mapped(self):
        with override_settings(LDAP_SERVERS={"default": self.server}):
            config = LdapConfig.from_settings()
        self.assertEqual(config.url, "ldaps://ldap.example.com:636")
        self.assertTrue(config.insecure_skip_verify)
        self.assertEqual(config.bind_dn, "cn=svc,dc=example,dc=com")
        self.assertEqual(config.bind_password, "svcpw")
        self.assertEqual(config.base, "dc=example,dc=com")
        self.assertEqual(config.group_filter, "(memberUid=%s)")
        self.assertEqual(config.attributes, ("mail", "cn"))
        self.assertEqual(config.timeout, 15.0)
        self.assertIsNone(config.ca_certificates)
        self.assertIsNone(config.client_certificate)

    def test_named_server(self):
        with override_settings(LDAP_SERVERS={"other": self.server}):
            config = LdapConfig.from_settings("other")
        self.assertEqual(config.host, "ldap.example.com")

    def test_defaults(self):
        with override_settings(LDAP_SERVERS={"default": {"host": "ldap.example.com"}}):
            config = LdapConfig.from_settings()
        self.assertEqual(config.port, 389)
        self.assertFalse(config.use_ssl)
        self.assertFalse(config.insecure_skip_verify)
        self.assertIsNone(config.timeout)

    def test_missing_key(self):
        with override_settings(LDAP_SERVERS={"default": self.server}):
            with self.assertRaises(ConfigError):
                LdapConfig.from_settings("missing")

    def test_missing_setting(self):
        with override_settings():
            del settings.LDAP_SERVERS
            with self.assertRaises(ImproperlyConfigured):
                LdapConfig.from_settings()

    def test_invalid_tls_verify(self):
        self.server["tls_verify"] = "sometimes"
        with override_settings(LDAP_SERVERS={"default": self.server}):
            with self.assertRaises(ConfigError):
                LdapConfig.from_settings()

    def test_ca_certfile_is_read(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cafile = Path(tmpdir) / "ca.pem"
            cafile.write_bytes(b"-----BEGIN CERTIFICATE-----\n")
            self.server["tls_ca_certfile"] = str(cafile)
            with override_settings(LDAP_SERVERS={"default": self.server}):
                config = LdapConfig.from_settings()
        self.assertEqual(config.ca_certificates, b"-----BEGIN CERTIFICATE-----\n")

    def test_missing_ca_certfile(self):
        self.server["tls_ca_certfile"] = "/nonexistent/ca.pem"
        with override_settings(LDAP_SERVERS={"default": self.server}):
            with self.assertRaises(ConfigError):
                LdapConfig.from_settings()

    def test_ca_certfile_is_a_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            self.server["tls_ca_certfile"] = tmpdir
            with override_settings(LDAP_SERVERS={"default": self.server}):
                with self.assertRaises(ConfigError):
                    LdapConfig.from_settings()

    def test_invalid_user_filter(self):
        self.server["user_filter"] = "(objectClass=posixAccount)"
        with override_settings(LDAP_SERVERS={"default": self.server}):
            with self.assertRaises(ConfigError):
                LdapConfig.from_settings()

    def test_client_certificate(self):
        self.server["tls_certfile"] = "/etc/ssl/ldap/cert.pem"
        self.server["tls_keyfile"] = "/etc/ssl/ldap/key.pem"
        with override_settings(LDAP_SERVERS={"default": self.server}):
            config = LdapConfig.from_settings()
        self.assertEqual(
            config.client_certificate, ("/etc/ssl/ldap/cert.pem", "/etc/ssl/ldap/key.pem")
        )

    def test_client_certificate_needs_key(self):
        self.server["tls_certfile"] = "/etc/ssl/ldap/cert.pem"
        with override_settings(LDAP_SERVERS={"default": self.server}):
            with self.assertRaises(ConfigError):
                LdapConfig.from_settings()


class TestCheckFile(unittest.TestCase):

    def test_existing_file(self):
        with tempfile.NamedTemporaryFile() as fh:
            self.assertEqual(check_file(fh.name, "CA Certificate"), Path(fh.name))

    def test_missing_file_raises_given_class(self):
        with self.assertRaises(ConfigError):
            check_file("/nonexistent/ca.pem", "CA Certificate")
        with self.assertRaises(LdapConnectionError):
            check_file("/nonexistent/cert.pem", "TLS Certificate", LdapConnectionError)

    def test_directory_is_not_a_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaisesRegex(LdapConnectionError, "is not a file"):
                check_file(tmpdir, "TLS Key", LdapConnectionError)


if __name__ == "__main__":
    unittest.main()
