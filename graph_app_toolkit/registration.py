"""
App registration and service principal initialisation.

Creates the application object with its certificate key credential and
permission set, creates its service principal, issues one OAuth2 permission
grant per resource and builds the admin-consent URL. A failing step aborts
the whole registration; anything already created is left for the operator
to clean up.
"""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass

from .audit_log import AuditLog
from .certificates import CertificateStore
from .errors import ConflictError, NotFoundError, ValidationError
from .graph import GraphClient
from .models import CertificateDescriptor
from .permissions import MAX_RESOURCE_BLOCKS, RequiredPermissionSet

AUDIT_DIRECTORY_ROLES = ["Exchange Administrator", "Global Reader"]
GRANT_DELAY_SECONDS = 2


def admin_consent_url(tenant_id: str, app_id: str) -> str:
    return f"https://login.microsoftonline.com/{tenant_id}/adminconsent?client_id={app_id}"


@dataclass(frozen=True)
class ServicePrincipalGrant:
    service_principal_id: str
    consent_url: str
    granted: dict[str, str]  # resource appId -> space-joined scope


def register_application(
    graph: GraphClient,
    store: CertificateStore,
    display_name: str,
    certificate: CertificateDescriptor | None,
    permissions: RequiredPermissionSet,
    audit: AuditLog,
    sign_in_audience: str = "AzureADMyOrg",
    notes: str = "",
) -> dict:
    """Create the application object; returns the Graph application resource."""
    with audit.function("Register-Application"):
        if certificate is None or not certificate.thumbprint:
            raise ValidationError(
                "A certificate thumbprint is required to register the app; no other methods supported yet."
            )
        der = store.public_der(certificate.thumbprint)
        body = {
            "displayName": display_name,
            "signInAudience": sign_in_audience,
            "requiredResourceAccess": permissions.to_graph(),
            "keyCredentials": [
                {
                    "type": "AsymmetricX509Cert",
                    "usage": "Verify",
                    "key": base64.b64encode(der).decode("ascii"),
                    "displayName": certificate.subject,
                }
            ],
        }
        if notes:
            body["notes"] = notes
        application = graph.create_application(body)
        audit.log(
            f"Created application {display_name} (appId {application.get('appId')}, "
            f"objectId {application.get('id')}).",
            "Information",
        )
        return application


def grant_permissions(
    graph: GraphClient,
    application: dict,
    permissions: RequiredPermissionSet,
    tenant_id: str,
    audit: AuditLog,
    delay_seconds: float = GRANT_DELAY_SECONDS,
) -> ServicePrincipalGrant:
    """Create the service principal and one AllPrincipals grant per resource block."""
    with audit.function("Initialize-ServicePrincipal"):
        if len(permissions) > MAX_RESOURCE_BLOCKS:
            raise ConflictError("Too many resources in RequiredResourceAccessList.")
        app_id = application.get("appId")
        if not app_id:
            raise NotFoundError(f"Application {application.get('id', '')} has no appId.")

        client_sp = graph.create_service_principal(app_id)
        audit.log(f"Created service principal {client_sp['id']} for appId {app_id}.", "Information")

        granted: dict[str, str] = {}
        for i, block in enumerate(permissions):
            if i > 0 and delay_seconds:
                time.sleep(delay_seconds)
            resource_sp = graph.get_service_principal_by_app_id(block.resource_app_id)
            scope = " ".join(block.scope_names)
            graph.create_oauth2_permission_grant(
                client_id=client_sp["id"],
                resource_id=resource_sp["id"],
                scope=scope,
            )
            granted[block.resource_app_id] = scope
            audit.log(f"Granted '{scope}' on {block.kind.value} ({block.resource_app_id}).")

        url = admin_consent_url(tenant_id, app_id)
        audit.log(f"Admin consent URL: {url}", "Information")
        return ServicePrincipalGrant(service_principal_id=client_sp["id"], consent_url=url, granted=granted)


def assign_directory_roles(
    graph: GraphClient,
    service_principal_id: str,
    role_names: list[str],
    audit: AuditLog,
) -> list[str]:
    """Add the service principal to each directory role, activating roles not yet in use."""
    with audit.function("Add-DirectoryRoles"):
        assigned = []
        for name in role_names:
            role = graph.get_directory_role(name)
            if role is None:
                audit.log(f"Directory role '{name}' is not active; activating from template.", "Warning")
                role = graph.activate_directory_role(name)
            graph.add_directory_role_member(role["id"], service_principal_id)
            audit.log(f"Assigned directory role '{name}' ({role['id']}) to {service_principal_id}.", "Information")
            assigned.append(name)
        return assigned
