"""
Unit tests for file storage.
"""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID

from botls.core.errors import MetadataLookupError, StoreError
from botls.core.store import FileStore, generate_private_key, replace_wildcards


def self_signed_pem(domain: str, not_after: datetime) -> str:
    key = generate_private_key()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_after - timedelta(days=90))
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode()


@pytest.fixture
def store(tmp_path):
    store = FileStore(tmp_path, "ops@example.com")
    store.ensure_dirs()
    return store


class TestLayout:
    """Test the storage layout."""

    def test_replace_wildcards(self):
        assert replace_wildcards("*.example.com") == "_.example.com"
        assert replace_wildcards("example.com") == "example.com"

    def test_paths(self, store, tmp_path):
        assert store.account_key_path() == tmp_path / "accounts" / "ops@example.com.pem"
        assert store.cert_path("*.example.com") == tmp_path / "certs" / "_.example.com.crt"
        assert store.cert_key_path("example.com") == tmp_path / "certs" / "example.com.key"
        assert store.order_info_path("example.com") == tmp_path / "orders" / "ops@example.com" / "example.com.json"
        assert store.provision_path("example.com", "*.example.com").name == "example.com.provision._.example.com.json"

    def test_ensure_dirs(self, store):
        assert store.accounts_dir.is_dir()
        assert store.certs_dir.is_dir()
        assert store.orders_dir.is_dir()


class TestKeys:
    """Test account and certificate keys."""

    def test_account_key_generated_once(self, store):
        first = store.load_account_key()
        second = store.load_account_key()

        assert store.account_key_path().stat().st_mode & 0o777 == 0o600
        assert first.private_numbers() == second.private_numbers()

    def test_corrupt_account_key(self, store):
        store.account_key_path().write_text("garbage")
        with pytest.raises(StoreError):
            store.load_account_key()

    def test_cert_key_round_trip(self, store):
        assert store.load_cert_key("example.com") is None

        key = generate_private_key()
        store.save_cert_key("example.com", key)

        assert store.load_cert_key("example.com").private_numbers() == key.private_numbers()


class TestCertificateMeta:
    """Test certificate metadata lookup."""

    def test_missing_certificate(self, store):
        meta = store.get_certificate_meta("example.com")
        assert meta.exists is False
        assert meta.not_after_ts is None
        assert meta.cert_path == str(store.cert_path("example.com"))

    def test_stored_certificate(self, store):
        not_after = datetime(2030, 1, 1, tzinfo=timezone.utc)
        store.save_certificate("example.com", self_signed_pem("example.com", not_after))

        meta = store.get_certificate_meta("example.com")
        assert meta.exists is True
        assert meta.not_after_ts == int(not_after.timestamp())

    def test_wildcard_certificate(self, store):
        not_after = datetime(2031, 6, 1, tzinfo=timezone.utc)
        store.save_certificate("*.example.com", self_signed_pem("*.example.com", not_after))

        assert (store.certs_dir / "_.example.com.crt").exists()
        assert store.get_certificate_meta("*.example.com").not_after_ts == int(not_after.timestamp())

    def test_unparseable_certificate(self, store):
        store.cert_path("example.com").write_text("not a certificate")

        with pytest.raises(MetadataLookupError) as exc_info:
            store.get_certificate_meta("example.com")
        assert exc_info.value.domain == "example.com"


class TestOrderRecords:
    """Test order info and provision records."""

    def test_order_info(self, store):
        assert store.load_order_info("example.com") is None

        store.save_order_info("example.com", {"status": "pending"})
        assert store.load_order_info("example.com") == {"status": "pending"}

        store.delete_order_info("example.com")
        store.delete_order_info("example.com")
        assert store.load_order_info("example.com") is None

    def test_provision_record(self, store):
        record = {"provider": "dns.vultr", "domain": "example.com", "record_id": "abc"}
        store.save_order_provision("example.com", "www.example.com", record)

        assert store.load_order_provision("example.com", "www.example.com") == record

        store.delete_order_provision("example.com", "www.example.com")
        with pytest.raises(StoreError):
            store.load_order_provision("example.com", "www.example.com")

    def test_delete_failure_raises_store_error(self, store):
        store.provision_path("example.com", "example.com").mkdir(parents=True)

        with pytest.raises(StoreError):
            store.delete_order_provision("example.com", "example.com")
