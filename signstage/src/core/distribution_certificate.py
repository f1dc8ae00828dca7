import base64
import binascii

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from signstage.src.core.errors import configuration_error
from signstage.src.job.job import DistributionCertificate


def _load_certificate(cert: DistributionCertificate) -> x509.Certificate:
    """Decode the PKCS#12 bundle and return its certificate"""
    try:
        p12 = base64.b64decode(cert.data_base64, validate=True)
    except binascii.Error as e:
        raise configuration_error(f"Distribution certificate is not valid base64: {e}")

    try:
        _, certificate, _ = pkcs12.load_key_and_certificates(
            p12, cert.password.encode("utf-8")
        )
    except ValueError as e:
        raise configuration_error(
            f"Failed to read distribution certificate (wrong password?): {e}"
        )

    if certificate is None:
        raise configuration_error("Distribution certificate bundle contains no certificate")
    return certificate


def get_fingerprint(cert: DistributionCertificate) -> str:
    """SHA-1 fingerprint (uppercase hex) of the DER-encoded certificate"""
    return _load_certificate(cert).fingerprint(hashes.SHA1()).hex().upper()


def get_common_name(cert: DistributionCertificate) -> str:
    """Subject common name, e.g. 'Apple Distribution: Example Inc (ABCDE12345)'"""
    attributes = _load_certificate(cert).subject.get_attributes_for_oid(
        NameOID.COMMON_NAME
    )
    if not attributes:
        raise configuration_error("Distribution certificate has no common name")
    return attributes[0].value
