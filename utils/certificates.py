#!/usr/bin/env python3
"""
Client key material for secured OPC UA endpoints.

Generates an RSA key pair and a self-signed application instance certificate
on first use and reuses them for the rest of the process.
"""

import datetime
import logging
import socket
import threading
from typing import NamedTuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from scanners.errors import KeyMaterialError

logger = logging.getLogger("UAScanner.certificates")

APPLICATION_URI = "urn:ua-scanner:client"
APPLICATION_NAME = "UA Privilege Scanner"
KEY_SIZE = 2048
VALIDITY_DAYS = 365

_cache_lock = threading.Lock()
_key_material = None


class KeyMaterial(NamedTuple):
    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate


def generate_key_material(application_uri=APPLICATION_URI, hostname=None):
    """
    Create a fresh RSA key pair and a matching self-signed certificate.

    The certificate carries the application URI as SubjectAltName, which OPC UA
    servers compare against the ApplicationUri sent in CreateSession.

    Raises:
        KeyMaterialError: if the key or the certificate cannot be produced
    """
    hostname = hostname or socket.gethostname()
    try:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
        subject = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, APPLICATION_NAME),
            x509.NameAttribute(NameOID.DOMAIN_COMPONENT, hostname),
        ])
        now = datetime.datetime.now(datetime.timezone.utc)
        certificate = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=VALIDITY_DAYS))
            .add_extension(
                x509.SubjectAlternativeName([
                    x509.UniformResourceIdentifier(application_uri),
                    x509.DNSName(hostname),
                ]),
                critical=False,
            )
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True, content_commitment=True,
                    key_encipherment=True, data_encipherment=True,
                    key_agreement=False, key_cert_sign=False, crl_sign=False,
                    encipher_only=False, decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]),
                critical=False,
            )
            .sign(private_key, hashes.SHA256())
        )
    except Exception as e:
        raise KeyMaterialError(f"Could not generate client key material: {e}") from e

    logger.debug(f"Generated self-signed client certificate for {application_uri}")
    return KeyMaterial(private_key, certificate)


def get_key_material():
    """Return the process-wide key material, generating it on first call."""
    global _key_material
    with _cache_lock:
        if _key_material is None:
            _key_material = generate_key_material()
        return _key_material


def reset_key_material():
    """Forget the cached key material (used by tests)."""
    global _key_material
    with _cache_lock:
        _key_material = None
