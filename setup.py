#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='django-ldapauth',
    version='1.0.0',
    description='Authenticate usernames and passwords against an LDAP directory',
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['django', 'ldap', 'authentication'],
    author="Caltech IMSS ADS",
    author_email="imss-ads-staff@caltech.edu",
    url='https://github.com/caltechads/django-ldapauth',
    packages=find_packages(exclude=['bin']),
    package_data={'ldapauth.tests': ['*.json', '*.pem']},
    include_package_data=True,
    install_requires=[
        'django',
        'python-ldap',
    ],
    extras_require={
        'test': [
            'pytest',
            'python-ldap-faker',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3"
    ],
)
