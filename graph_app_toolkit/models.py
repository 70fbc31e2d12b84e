"""
Result records for published apps and certificates.

Each app kind has its own result type; they are unioned only when serialised
for the vault (to_dict adds a "kind" tag).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

EXPORTABLE = "Exportable"
NON_EXPORTABLE = "NonExportable"
EXPORT_POLICIES = (EXPORTABLE, NON_EXPORTABLE)


@dataclass(frozen=True)
class CertificateDescriptor:
    thumbprint: str
    subject: str
    not_after: datetime
    export_policy: str = NON_EXPORTABLE
    created: bool = False  # True when generated by this invocation

    @property
    def expiry(self) -> str:
        return self.not_after.isoformat()


@dataclass(frozen=True)
class AppRegistrationResult:
    display_name: str
    app_id: str
    object_id: str
    tenant_id: str
    certificate_thumbprint: str
    certificate_expiry: str
    consent_url: str
    notes: str = ""
    certificate_store_location: str = "CurrentUser"

    kind = "AppRegistration"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "displayName": self.display_name,
            "appId": self.app_id,
            "objectId": self.object_id,
            "tenantId": self.tenant_id,
            "certificateThumbprint": self.certificate_thumbprint,
            "certificateExpiry": self.certificate_expiry,
            "certificateStoreLocation": self.certificate_store_location,
            "consentUrl": self.consent_url,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class EmailAppResult(AppRegistrationResult):
    authorized_sender: str = ""
    sending_group: str = ""

    kind = "EmailApp"

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["authorizedSender"] = self.authorized_sender
        data["sendingGroup"] = self.sending_group
        return data


@dataclass(frozen=True)
class AuditAppResult(AppRegistrationResult):
    directory_roles: tuple[str, ...] = ()

    kind = "AuditApp"

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["directoryRoles"] = list(self.directory_roles)
        return data


@dataclass(frozen=True)
class MemAppResult(AppRegistrationResult):
    permission_set: str = "ReadOnly"
    permissions: tuple[str, ...] = field(default_factory=tuple)

    kind = "MemPolicyApp"

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["permissionSet"] = self.permission_set
        data["permissions"] = list(self.permissions)
        return data


AppResult = Union[EmailAppResult, AuditAppResult, MemAppResult]
