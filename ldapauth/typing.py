"""
ldapauth type definitions.

Type aliases for the python-ldap data structures the client reads, using
Python 3.10+ type hinting conventions.
"""

LDAPData = tuple[str, dict[str, list[bytes]]]
Attributes = dict[str, str]
ClientCertificate = tuple[str, str]
