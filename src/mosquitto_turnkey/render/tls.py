from __future__ import annotations

import datetime
import ipaddress
import logging
from dataclasses import dataclass
from typing import List, Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from mosquitto_turnkey.utils.diagnostics import MosquittoProvisioningError

LOGGER = logging.getLogger(__name__)

FALLBACK_NAME = "localhost"
KEY_SIZE = 2048
VALIDITY_DAYS = 365


@dataclass(frozen=True)
class CertificatePair:
    """PEM-encoded self-signed certificate and its private key."""

    cert_pem: bytes
    key_pem: bytes
    names: List[str]


def _subject_alternative_names(names: Sequence[str]) -> List[x509.GeneralName]:
    entries: List[x509.GeneralName] = []
    for name in names:
        try:
            entries.append(x509.IPAddress(ipaddress.ip_address(name)))
        except ValueError:
            entries.append(x509.DNSName(name))
    return entries


def generate_self_signed(names: Sequence[str] | None = None) -> CertificatePair:
    """
    Generate a self-signed certificate for the given listener names.

    The first name becomes the common name; all of them go into the
    subject alternative names. Without names a generic localhost identity
    (also valid for 127.0.0.1) is issued.
    """
    subject_names = list(names or [])
    if not subject_names:
        subject_names = [FALLBACK_NAME, "127.0.0.1"]

    try:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
        subject = issuer = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, subject_names[0]),
        ])
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=1))
            .not_valid_after(now + datetime.timedelta(days=VALIDITY_DAYS))
            .add_extension(
                x509.SubjectAlternativeName(_subject_alternative_names(subject_names)),
                critical=False,
            )
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .sign(private_key, hashes.SHA256())
        )
    except ValueError as exc:
        raise MosquittoProvisioningError(f"certificate generation failed: {exc}") from exc

    LOGGER.debug("generated self-signed certificate for %s", ", ".join(subject_names))
    return CertificatePair(
        cert_pem=cert.public_bytes(serialization.Encoding.PEM),
        key_pem=private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ),
        names=subject_names,
    )
