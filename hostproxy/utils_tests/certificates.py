import datetime
from pathlib import Path
from typing import Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from hostproxy.models import CertificateBinding


def write_self_signed_certificate(directory: Path, host: str) -> Tuple[CertificateBinding, bytes]:
    """
    Write a throwaway certificate and key for ``host`` into ``directory``.
    Returns the binding and the DER bytes a client should see in the handshake.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, host)])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(host)]), critical=False)
        .sign(key, hashes.SHA256())
    )

    certfile = directory / f"{host}.fullchain.pem"
    keyfile = directory / f"{host}.privkey.pem"
    certfile.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    keyfile.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    binding = CertificateBinding(host=host, certfile=str(certfile), keyfile=str(keyfile))
    return binding, certificate.public_bytes(serialization.Encoding.DER)
