"""
File storage for ACME account keys, certificates and order state.

Layout under the data directory:

    accounts/<email>.pem                          account private key
    certs/<name>.crt, certs/<name>.key            certificate chain and key
    orders/<email>/<name>.json                    last seen order body
    orders/<email>/<name>.provision.<domain>.json challenge provision record

A leading ``*`` of wildcard names is stored as ``_``.
"""

import json
import logging
from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from botls.core.errors import MetadataLookupError, StoreError
from botls.models.order import CertificateMeta

logger = logging.getLogger(__name__)


def replace_wildcards(domain: str) -> str:
    """File-safe form of a domain name."""
    if domain.startswith("*"):
        return "_" + domain[1:]
    return domain


def generate_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def private_key_to_pem(private_key) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


class FileStore:
    """Filesystem-backed storage rooted at ``data_dir``."""

    def __init__(self, data_dir: str | Path, account_email: str):
        self.base_dir = Path(data_dir)
        self.account_email = account_email
        self.accounts_dir = self.base_dir / "accounts"
        self.certs_dir = self.base_dir / "certs"
        self.orders_dir = self.base_dir / "orders" / account_email

    def ensure_dirs(self) -> None:
        """Ensure the storage directories exist."""
        for dir_path in (self.accounts_dir, self.certs_dir, self.orders_dir):
            try:
                dir_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StoreError(f"Failed to create storage dir {dir_path}: {e}")

    def _write(self, path: Path, content: bytes | str, mode: int | None = None) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content)
            if mode is not None:
                path.chmod(mode)
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}")

    def _delete(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to delete {path}: {e}")

    # Account key

    def account_key_path(self) -> Path:
        return self.accounts_dir / f"{self.account_email}.pem"

    def load_account_key(self):
        """Load the account private key, generating and saving one if missing."""
        key_path = self.account_key_path()
        if not key_path.exists():
            logger.info(f"Generating new ACME account key for {self.account_email}")
            private_key = generate_private_key()
            self.save_account_key(private_key)
            return private_key

        try:
            return serialization.load_pem_private_key(key_path.read_bytes(), password=None)
        except (OSError, ValueError) as e:
            raise StoreError(f"Error loading the account key {key_path}: {e}")

    def save_account_key(self, private_key) -> None:
        self._write(self.account_key_path(), private_key_to_pem(private_key), mode=0o600)

    # Certificate keys and certificates

    def cert_path(self, domain: str) -> Path:
        return self.certs_dir / f"{replace_wildcards(domain)}.crt"

    def cert_key_path(self, domain: str) -> Path:
        return self.certs_dir / f"{replace_wildcards(domain)}.key"

    def load_cert_key(self, domain: str):
        """Load the certificate private key, None if there is none yet."""
        key_path = self.cert_key_path(domain)
        if not key_path.exists():
            return None
        try:
            return serialization.load_pem_private_key(key_path.read_bytes(), password=None)
        except (OSError, ValueError) as e:
            raise StoreError(f"Error loading the certificate key {key_path}: {e}", domain=domain)

    def save_cert_key(self, domain: str, private_key) -> None:
        self._write(self.cert_key_path(domain), private_key_to_pem(private_key), mode=0o600)

    def save_certificate(self, domain: str, fullchain_pem: str) -> Path:
        cert_path = self.cert_path(domain)
        self._write(cert_path, fullchain_pem)
        logger.info(f"Saved certificate for {domain} to {cert_path}")
        return cert_path

    def get_certificate_meta(self, domain: str) -> CertificateMeta:
        """
        Inspect the stored certificate of a domain.

        Returns:
            CertificateMeta; ``exists`` is False when no certificate file is present

        Raises:
            MetadataLookupError if the file can't be read or parsed
        """
        cert_path = self.cert_path(domain)
        if not cert_path.exists():
            return CertificateMeta(exists=False, cert_path=str(cert_path))

        try:
            cert_pem = cert_path.read_bytes()
        except OSError as e:
            raise MetadataLookupError(f"Failed to read certificate {cert_path}: {e}", domain=domain)

        try:
            cert = x509.load_pem_x509_certificate(cert_pem)
        except ValueError as e:
            raise MetadataLookupError(f"Failed to parse certificate {cert_path}: {e}", domain=domain)

        return CertificateMeta(
            exists=True,
            cert_path=str(cert_path),
            not_after_ts=int(cert.not_valid_after_utc.timestamp()),
        )

    # Orders and challenge provisions

    def order_info_path(self, domain: str) -> Path:
        return self.orders_dir / f"{replace_wildcards(domain)}.json"

    def provision_path(self, primary_domain: str, domain: str) -> Path:
        return self.orders_dir / f"{replace_wildcards(primary_domain)}.provision.{replace_wildcards(domain)}.json"

    def save_order_info(self, domain: str, order_info: dict[str, Any]) -> None:
        self._write(self.order_info_path(domain), json.dumps(order_info))

    def load_order_info(self, domain: str) -> dict[str, Any] | None:
        path = self.order_info_path(domain)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to load order info {path}: {e}", domain=domain)

    def delete_order_info(self, domain: str) -> None:
        self._delete(self.order_info_path(domain))

    def save_order_provision(self, primary_domain: str, domain: str, provision: dict[str, Any]) -> None:
        self._write(self.provision_path(primary_domain, domain), json.dumps(provision))

    def load_order_provision(self, primary_domain: str, domain: str) -> dict[str, Any]:
        path = self.provision_path(primary_domain, domain)
        try:
            return json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to load provision record {path}: {e}", domain=domain)

    def delete_order_provision(self, primary_domain: str, domain: str) -> None:
        self._delete(self.provision_path(primary_domain, domain))
