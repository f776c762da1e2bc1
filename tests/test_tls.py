"""Tests for certificate material and SSL contexts."""

import ssl
from datetime import timedelta

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import load_pem_private_key
from cryptography.x509.oid import NameOID

from socketit.tls import (
    client_ssl_context,
    create_self_signed_cert,
    load_certificate_material,
    server_ssl_context,
    write_certificate_material,
)


def test_self_signed_certificate_shape():
    material = create_self_signed_cert()
    cert = x509.load_pem_x509_certificate(material.cert)
    key = load_pem_private_key(material.key, password=None)

    assert isinstance(key, rsa.RSAPrivateKey)
    assert key.key_size == 2048
    assert cert.subject == cert.issuer
    assert cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "localhost"
    assert cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value == "Test Company"
    validity = cert.not_valid_after_utc - cert.not_valid_before_utc
    assert validity == timedelta(days=365)


def test_load_falls_back_to_self_signed(caplog):
    material = load_certificate_material()
    assert b"BEGIN CERTIFICATE" in material.cert
    assert material.ca is None
    assert "Generating self-signed certificate" in caplog.text


def test_load_reads_supplied_files(tmp_path):
    generated = create_self_signed_cert("example.test")
    cert_path, key_path = write_certificate_material(generated, tmp_path)

    material = load_certificate_material(cert_path, key_path, ca_file=cert_path)

    assert material.cert == generated.cert
    assert material.key == generated.key
    assert material.ca == generated.cert


def test_server_context_loads_material():
    context = server_ssl_context(create_self_signed_cert())
    assert isinstance(context, ssl.SSLContext)


def test_client_context_verification_toggle():
    assert client_ssl_context(verify=True).verify_mode == ssl.CERT_REQUIRED
    insecure = client_ssl_context(verify=False)
    assert insecure.verify_mode == ssl.CERT_NONE
    assert insecure.check_hostname is False
