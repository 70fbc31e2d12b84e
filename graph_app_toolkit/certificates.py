"""
Certificate store and provider.

The store is a directory per store location (CurrentUser / LocalMachine)
holding one PKCS#12 file per certificate, keyed by its SHA-1 thumbprint, plus
an index.json with subject, expiry and export policy. The provider either
returns an existing certificate by thumbprint or creates a new self-signed
one under a subject name.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from .audit_log import AuditLog
from .errors import ConflictError, NotFoundError, ValidationError
from .models import EXPORT_POLICIES, NON_EXPORTABLE, CertificateDescriptor
from .validation import validate_thumbprint

STORE_LOCATIONS = ("CurrentUser", "LocalMachine")
DEFAULT_VALIDITY_DAYS = 365
KEY_SIZE = 2048


def thumbprint_of(certificate: x509.Certificate) -> str:
    return certificate.fingerprint(hashes.SHA1()).hex().upper()


def _common_name(subject: str) -> str:
    """Accept either "CN=Name" or a bare name."""
    return subject[3:] if subject.upper().startswith("CN=") else subject


def _normalize_subject(subject: str) -> str:
    return f"CN={_common_name(subject)}"


class CertificateStore:
    """Directory-backed certificate store for one store location."""

    def __init__(self, root: Path, location: str = "CurrentUser") -> None:
        if location not in STORE_LOCATIONS:
            raise ValidationError(f"Store location must be one of {', '.join(STORE_LOCATIONS)}.")
        self.location = location
        self.path = Path(root) / location

    @property
    def _index_path(self) -> Path:
        return self.path / "index.json"

    def _read_index(self) -> dict[str, dict]:
        if not self._index_path.exists():
            return {}
        return json.loads(self._index_path.read_text(encoding="utf-8"))

    def _write_index(self, index: dict[str, dict]) -> None:
        self.path.mkdir(parents=True, exist_ok=True)
        self._index_path.write_text(json.dumps(index, indent=2), encoding="utf-8")

    @staticmethod
    def _descriptor(thumbprint: str, meta: dict) -> CertificateDescriptor:
        return CertificateDescriptor(
            thumbprint=thumbprint,
            subject=meta["subject"],
            not_after=datetime.fromisoformat(meta["notAfter"]),
            export_policy=meta.get("exportPolicy", NON_EXPORTABLE),
        )

    def list(self) -> list[CertificateDescriptor]:
        return [self._descriptor(t, m) for t, m in self._read_index().items()]

    def get(self, thumbprint: str) -> CertificateDescriptor | None:
        thumbprint = thumbprint.upper()
        meta = self._read_index().get(thumbprint)
        if meta is None or not (self.path / f"{thumbprint}.pfx").exists():
            return None
        return self._descriptor(thumbprint, meta)

    def find_by_subject(self, subject: str) -> list[CertificateDescriptor]:
        wanted = _normalize_subject(subject).lower()
        return [d for d in self.list() if d.subject.lower() == wanted]

    def add(
        self,
        certificate: x509.Certificate,
        private_key: rsa.RSAPrivateKey,
        export_policy: str = NON_EXPORTABLE,
    ) -> CertificateDescriptor:
        thumbprint = thumbprint_of(certificate)
        subject = _normalize_subject(
            certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        )
        self.path.mkdir(parents=True, exist_ok=True)
        pfx = pkcs12.serialize_key_and_certificates(
            name=_common_name(subject).encode("utf-8"),
            key=private_key,
            cert=certificate,
            cas=None,
            encryption_algorithm=serialization.NoEncryption(),
        )
        (self.path / f"{thumbprint}.pfx").write_bytes(pfx)
        index = self._read_index()
        index[thumbprint] = {
            "subject": subject,
            "notAfter": certificate.not_valid_after_utc.isoformat(),
            "exportPolicy": export_policy,
        }
        self._write_index(index)
        return self._descriptor(thumbprint, index[thumbprint])

    def remove(self, thumbprint: str) -> None:
        thumbprint = thumbprint.upper()
        index = self._read_index()
        if thumbprint not in index:
            raise NotFoundError(f"Certificate with thumbprint {thumbprint} not found")
        del index[thumbprint]
        (self.path / f"{thumbprint}.pfx").unlink(missing_ok=True)
        self._write_index(index)

    def _load(self, thumbprint: str) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
        thumbprint = thumbprint.upper()
        pfx_path = self.path / f"{thumbprint}.pfx"
        if not pfx_path.exists():
            raise NotFoundError(f"Certificate with thumbprint {thumbprint} not found")
        key, cert, _ = pkcs12.load_key_and_certificates(pfx_path.read_bytes(), None)
        return key, cert

    def load_certificate(self, thumbprint: str) -> x509.Certificate:
        return self._load(thumbprint)[1]

    def public_der(self, thumbprint: str) -> bytes:
        """Raw DER bytes of the certificate (public part only)."""
        return self.load_certificate(thumbprint).public_bytes(serialization.Encoding.DER)

    def private_key_pem(self, thumbprint: str) -> str:
        """PEM private key for signing client assertions; usable regardless of export policy."""
        key, _ = self._load(thumbprint)
        return key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode("utf-8")

    def export_pfx(self, thumbprint: str, output_path: Path, password: str) -> Path:
        descriptor = self.get(thumbprint)
        if descriptor is None:
            raise NotFoundError(f"Certificate with thumbprint {thumbprint} not found")
        if descriptor.export_policy == NON_EXPORTABLE:
            raise ConflictError(f"Certificate {descriptor.thumbprint} is marked NonExportable.")
        key, cert = self._load(thumbprint)
        output_path.write_bytes(
            pkcs12.serialize_key_and_certificates(
                name=_common_name(descriptor.subject).encode("utf-8"),
                key=key,
                cert=cert,
                cas=None,
                encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
            )
        )
        return output_path


def generate_self_signed(
    subject: str, validity_days: int = DEFAULT_VALIDITY_DAYS
) -> tuple[x509.Certificate, rsa.RSAPrivateKey]:
    """2048-bit RSA, SHA-256, digital-signature key usage."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, _common_name(subject))])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=validity_days))
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(key, hashes.SHA256())
    )
    return cert, key


@dataclass
class CertificatePlan:
    action: str  # "reuse" | "create" | "replace"
    subject: str
    thumbprint: str = ""
    replaces: list[str] = field(default_factory=list)


class CertificateProvider:
    """Returns an existing certificate by thumbprint or creates one under a subject."""

    def __init__(self, store: CertificateStore, audit: AuditLog, validity_days: int = DEFAULT_VALIDITY_DAYS) -> None:
        self.store = store
        self._audit = audit
        self.validity_days = validity_days

    def plan(self, subject: str, thumbprint: str | None = None, replace_existing: bool = False) -> CertificatePlan:
        """Describe what resolve() would do; fails early on the same conditions, changes nothing."""
        subject = _normalize_subject(subject)
        if thumbprint:
            thumbprint = validate_thumbprint(thumbprint)
            if self.store.get(thumbprint) is None:
                raise NotFoundError(f"Certificate with thumbprint {thumbprint} not found")
            return CertificatePlan(action="reuse", subject=subject, thumbprint=thumbprint)

        existing = self.store.find_by_subject(subject)
        if existing and not replace_existing:
            raise ConflictError(
                f"A certificate with subject {subject} already exists "
                f"({', '.join(d.thumbprint for d in existing)}). "
                "Pass its thumbprint to reuse it, or opt in to replacing it."
            )
        if existing:
            return CertificatePlan(
                action="replace", subject=subject, replaces=[d.thumbprint for d in existing]
            )
        return CertificatePlan(action="create", subject=subject)

    def resolve(
        self,
        subject: str,
        thumbprint: str | None = None,
        export_policy: str = NON_EXPORTABLE,
        replace_existing: bool = False,
    ) -> CertificateDescriptor:
        with self._audit.function("Resolve-Certificate"):
            if export_policy not in EXPORT_POLICIES:
                raise ValidationError(f"Export policy must be one of {', '.join(EXPORT_POLICIES)}.")
            plan = self.plan(subject, thumbprint, replace_existing)

            if plan.action == "reuse":
                descriptor = self.store.get(plan.thumbprint)
                self._audit.log(f"Using existing certificate {descriptor.thumbprint} ({descriptor.subject}).")
                return descriptor

            for old in plan.replaces:
                self._audit.log(f"Removing existing certificate {old} with subject {plan.subject}.", "Warning")
                self.store.remove(old)

            cert, key = generate_self_signed(plan.subject, self.validity_days)
            descriptor = self.store.add(cert, key, export_policy)
            self._audit.log(
                f"Created self-signed certificate {descriptor.thumbprint} for {plan.subject} "
                f"(expires {descriptor.expiry}, {export_policy}).",
                "Information",
            )
            return CertificateDescriptor(
                thumbprint=descriptor.thumbprint,
                subject=descriptor.subject,
                not_after=descriptor.not_after,
                export_policy=descriptor.export_policy,
                created=True,
            )
