import datetime
import ipaddress
from pathlib import Path
from typing import Iterable, Optional

# ── Cryptographic primitives from the 'cryptography' library ──────────────────
from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives import serialization

from pydantic import BaseModel, ConfigDict

KEY_FILENAME = "key.pem"
CERT_FILENAME = "cert.pem"

# Shown in HTTP mode so the user can switch to HTTPS without Python tooling.
OPENSSL_COMMAND = (
    "openssl req -x509 -newkey rsa:2048 -keyout key.pem -out cert.pem -days 365 -nodes"
)


class TLSMaterial(BaseModel):
    """Key and certificate found on disk, kept as paths and raw PEM bytes."""
    model_config = ConfigDict(frozen=True)

    key_path: Path
    cert_path: Path
    key: bytes
    cert: bytes


def probe_certificates(key_path: Path, cert_path: Path) -> Optional[TLSMaterial]:
    """
    Return the TLS material when both PEM files exist, otherwise None.

    The files are read as raw bytes and not parsed: a corrupt PEM is only
    detected when uvicorn builds its SSL context at startup.
    """
    key_path = Path(key_path)
    cert_path = Path(cert_path)

    if not key_path.is_file() or not cert_path.is_file():
        return None

    return TLSMaterial(
        key_path=key_path,
        cert_path=cert_path,
        key=key_path.read_bytes(),
        cert=cert_path.read_bytes(),
    )


def _san_entry(host: str) -> x509.GeneralName:
    # IP literals go in as IPAddress entries, everything else as DNSName
    try:
        return x509.IPAddress(ipaddress.ip_address(host))
    except ValueError:
        return x509.DNSName(host)


def generate_self_signed_cert(
    key_path: Path,
    cert_path: Path,
    hosts: Iterable[str] = (),
    days: int = 365,
):
    """
    Generate a self-signed TLS certificate and private key for local HTTPS.

    Produces two files:
      - key_path  : the RSA private key (keep this secret, never commit it)
      - cert_path : the self-signed X.509 certificate

    ``hosts`` are extra names or IPs added to the Subject Alternative Names,
    typically the LAN address phones on the same Wi-Fi will connect to.
    """

    # ── Step 1: Generate a 2048-bit RSA private key ───────────────────────────
    key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )

    # ── Step 2: Save the private key to disk ──────────────────────────────────
    Path(key_path).write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ))

    # ── Step 3: Certificate identity (subject == issuer for self-signed) ──────
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, u"Lavanya Dev Server"),
        x509.NameAttribute(NameOID.COMMON_NAME, u"localhost"),
    ])

    # Browsers ignore the Common Name, so every reachable name goes in the SAN
    names = ["localhost", "127.0.0.1"]
    for host in hosts:
        if host not in names:
            names.append(host)

    # ── Step 4: Build and sign the certificate ────────────────────────────────
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(
            x509.SubjectAlternativeName([_san_entry(name) for name in names]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    # ── Step 5: Save the signed certificate to disk ───────────────────────────
    Path(cert_path).write_bytes(cert.public_bytes(serialization.Encoding.PEM))

    return names
