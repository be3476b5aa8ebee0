"""Self-signed TLS material for serving and registering the admission webhook."""

import base64
import datetime
import logging
from typing import Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from kubernetes.client.exceptions import ApiException

from cloudsql_operator import constants

logger = logging.getLogger(__name__)

TLS_SECRET_NAME = "cloudsql-postgres-operator-tls"
TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY_KEY = "tls.key"
CERTIFICATE_VALIDITY = datetime.timedelta(days=10 * 365)


def service_dns_name(service_name: str, namespace: str) -> str:
    return f"{service_name}.{namespace}.svc"


def generate_certificate(common_name: str) -> Tuple[bytes, bytes]:
    """Generate a self-signed CA certificate valid for `common_name`.

    Returns the PEM-encoded certificate and private key.
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)

    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + CERTIFICATE_VALIDITY)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
        )
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(common_name)]), critical=False
        )
        .sign(key, hashes.SHA256())
    )

    cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return cert_pem, key_pem


def _read_tls_secret(core_api, namespace: str) -> Tuple[bytes, bytes]:
    secret = core_api.read_namespaced_secret(TLS_SECRET_NAME, namespace)
    data = secret.data or {}
    missing = [key for key in (TLS_CERT_KEY, TLS_PRIVATE_KEY_KEY) if not data.get(key)]
    if missing:
        raise RuntimeError(
            f"TLS secret {namespace}/{TLS_SECRET_NAME} is missing {', '.join(missing)}; "
            f"delete it to have a new certificate generated"
        )
    return (
        base64.b64decode(data[TLS_CERT_KEY]),
        base64.b64decode(data[TLS_PRIVATE_KEY_KEY]),
    )


def ensure_tls_secret(core_api, namespace: str, service_name: str) -> Tuple[bytes, bytes]:
    """Return the webhook's certificate and key, creating them if needed.

    The material is stored in a secret so that every replica of the operator
    serves and registers the same certificate.
    """
    try:
        cert_pem, key_pem = _read_tls_secret(core_api, namespace)
        logger.info(f"Using existing TLS secret {namespace}/{TLS_SECRET_NAME}")
        return cert_pem, key_pem
    except ApiException as e:
        if e.status != 404:
            raise

    cert_pem, key_pem = generate_certificate(service_dns_name(service_name, namespace))
    body = {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "kubernetes.io/tls",
        "metadata": {
            "name": TLS_SECRET_NAME,
            "namespace": namespace,
            "labels": {constants.LABEL_APP_KEY: constants.APPLICATION_NAME},
        },
        "data": {
            TLS_CERT_KEY: base64.b64encode(cert_pem).decode(),
            TLS_PRIVATE_KEY_KEY: base64.b64encode(key_pem).decode(),
        },
    }
    try:
        core_api.create_namespaced_secret(namespace, body)
        logger.info(f"Created TLS secret {namespace}/{TLS_SECRET_NAME}")
    except ApiException as e:
        if e.status != 409:
            raise
        # Another replica created it in the meantime.
        return _read_tls_secret(core_api, namespace)
    return cert_pem, key_pem
