"""TLS certificate material for ``wss://`` servers and clients.

Certificates come either from PEM files supplied by the operator or, when
none are given, from a freshly generated self-signed RSA-2048 certificate
valid for one year under a fixed placeholder subject.
"""

from __future__ import annotations

import logging
import ssl
import tempfile
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)
from cryptography.x509.oid import NameOID

logger = logging.getLogger(__name__)

KEY_SIZE = 2048
CERT_FILE = "cert.pem"
KEY_FILE = "key.pem"


@dataclass(frozen=True)
class CertificateMaterial:
    """PEM-encoded certificate, private key and optional CA bundle."""

    cert: bytes
    key: bytes
    ca: bytes | None = None


def _placeholder_subject(common_name: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
            x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, "California"),
            x509.NameAttribute(NameOID.LOCALITY_NAME, "San Francisco"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Company"),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "Test Division"),
        ]
    )


def create_self_signed_cert(
    common_name: str = "localhost", days: int = 365
) -> CertificateMaterial:
    """Generate an RSA-2048 key and a self-signed SHA-256 certificate."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
    subject = _placeholder_subject(common_name)
    not_before = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(private_key.public_key())
        .serial_number(1)
        .not_valid_before(not_before)
        .not_valid_after(not_before + timedelta(days=days))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(common_name)]),
            critical=False,
        )
        .sign(private_key, hashes.SHA256())
    )
    return CertificateMaterial(
        cert=cert.public_bytes(Encoding.PEM),
        key=private_key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=NoEncryption(),
        ),
    )


def load_certificate_material(
    cert_file: Path | None = None,
    key_file: Path | None = None,
    ca_file: Path | None = None,
) -> CertificateMaterial:
    """Read PEM files, or self-sign when no cert/key pair is supplied."""
    ca = Path(ca_file).read_bytes() if ca_file else None
    if cert_file and key_file:
        return CertificateMaterial(
            cert=Path(cert_file).read_bytes(),
            key=Path(key_file).read_bytes(),
            ca=ca,
        )
    logger.warning("No cert/key provided. Generating self-signed certificate...")
    generated = create_self_signed_cert()
    return CertificateMaterial(cert=generated.cert, key=generated.key, ca=ca)


def write_certificate_material(material: CertificateMaterial, out_dir: Path) -> tuple[Path, Path]:
    """Write ``cert.pem`` and ``key.pem`` under *out_dir*; returns both paths."""
    out_dir.mkdir(parents=True, exist_ok=True)
    cert_path = out_dir / CERT_FILE
    key_path = out_dir / KEY_FILE
    cert_path.write_bytes(material.cert)
    key_path.write_bytes(material.key)
    try:
        key_path.chmod(0o600)
    except OSError:
        # Windows doesn't fully support POSIX perms via chmod.
        pass
    return cert_path, key_path


def server_ssl_context(material: CertificateMaterial) -> ssl.SSLContext:
    """Build a server-side context from in-memory PEM material."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    # load_cert_chain only accepts file paths.
    with tempfile.TemporaryDirectory() as tmp:
        cert_path, key_path = write_certificate_material(material, Path(tmp))
        context.load_cert_chain(certfile=cert_path, keyfile=key_path)
    if material.ca:
        context.load_verify_locations(cadata=material.ca.decode("ascii"))
    return context


def client_ssl_context(
    verify: bool = True, ca_file: Path | None = None
) -> ssl.SSLContext:
    """Build a client-side context; ``verify=False`` accepts any certificate."""
    context = ssl.create_default_context(cafile=str(ca_file) if ca_file else None)
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context
