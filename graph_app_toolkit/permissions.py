"""
Permission resolution for published apps.

Maps application-permission names to Microsoft Graph app role ids by reading
the Graph service principal's appRoles, and appends fixed SharePoint and
Exchange blocks for the 365Audit scenario. Blocks are tagged with the
resource they belong to, so consumers look them up by identity, not position.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from .audit_log import AuditLog
from .errors import NotFoundError
from .graph import GraphClient

GRAPH_DISPLAY_NAME = "Microsoft Graph"
GRAPH_APP_ID = "00000003-0000-0000-c000-000000000000"
SHAREPOINT_APP_ID = "00000003-0000-0ff1-ce00-000000000000"
EXCHANGE_APP_ID = "00000002-0000-0ff1-ce00-000000000000"

AUDIT_SCENARIO = "365Audit"
MAX_RESOURCE_BLOCKS = 3

# Application permission bundles per app kind.
EMAIL_PERMISSIONS = ["Mail.Send", "User.Read.All"]
AUDIT_PERMISSIONS = [
    "AppCatalog.Read.All",
    "AuditLog.Read.All",
    "Directory.Read.All",
    "DeviceManagementConfiguration.Read.All",
    "DeviceManagementManagedDevices.Read.All",
    "Group.Read.All",
    "Organization.Read.All",
    "Policy.Read.All",
    "Reports.Read.All",
    "SecurityEvents.Read.All",
    "Sites.Read.All",
    "User.Read.All",
]
MEM_READ_PERMISSIONS = [
    "DeviceManagementApps.Read.All",
    "DeviceManagementConfiguration.Read.All",
    "DeviceManagementManagedDevices.Read.All",
    "DeviceManagementRBAC.Read.All",
    "DeviceManagementServiceConfig.Read.All",
    "Directory.Read.All",
    "Group.Read.All",
]
MEM_READWRITE_PERMISSIONS = [
    "DeviceManagementApps.ReadWrite.All",
    "DeviceManagementConfiguration.ReadWrite.All",
    "DeviceManagementManagedDevices.ReadWrite.All",
    "DeviceManagementRBAC.ReadWrite.All",
    "DeviceManagementServiceConfig.ReadWrite.All",
    "Directory.Read.All",
    "Group.ReadWrite.All",
]


class ResourceKind(str, Enum):
    GRAPH = "Graph"
    SHAREPOINT = "SharePoint"
    EXCHANGE = "Exchange"


@dataclass(frozen=True)
class ResourceAccess:
    id: str
    type: str = "Role"

    def to_graph(self) -> dict:
        return {"id": self.id, "type": self.type}


@dataclass
class ResourceAccessBlock:
    kind: ResourceKind
    resource_app_id: str
    resource_access: list[ResourceAccess] = field(default_factory=list)
    scope_names: list[str] = field(default_factory=list)

    def to_graph(self) -> dict:
        return {
            "resourceAppId": self.resource_app_id,
            "resourceAccess": [a.to_graph() for a in self.resource_access],
        }


# Hard-coded blocks added by the 365Audit scenario.
SHAREPOINT_AUDIT_BLOCK = (
    ResourceKind.SHAREPOINT,
    SHAREPOINT_APP_ID,
    [
        ("d13f72ca-a275-4b96-b789-48ebcc4da984", "Sites.Read.All"),
        ("678536fe-1083-478a-9c59-b99265e6b0d3", "Sites.FullControl.All"),
    ],
)
EXCHANGE_AUDIT_BLOCK = (
    ResourceKind.EXCHANGE,
    EXCHANGE_APP_ID,
    [("dc50a0fb-09a3-484d-be87-e023b12c6440", "Exchange.ManageAsApp")],
)


def _fixed_block(entry: tuple) -> ResourceAccessBlock:
    kind, app_id, perms = entry
    return ResourceAccessBlock(
        kind=kind,
        resource_app_id=app_id,
        resource_access=[ResourceAccess(id=pid) for pid, _ in perms],
        scope_names=[name for _, name in perms],
    )


@dataclass
class RequiredPermissionSet:
    """Ordered resource blocks; serialises to an application's requiredResourceAccess."""

    blocks: list[ResourceAccessBlock] = field(default_factory=list)

    def __iter__(self) -> Iterator[ResourceAccessBlock]:
        return iter(self.blocks)

    def __len__(self) -> int:
        return len(self.blocks)

    def add(self, block: ResourceAccessBlock) -> None:
        self.blocks.append(block)

    def get(self, kind: ResourceKind) -> ResourceAccessBlock | None:
        for block in self.blocks:
            if block.kind == kind:
                return block
        return None

    def to_graph(self) -> list[dict]:
        return [b.to_graph() for b in self.blocks]


def _application_roles(service_principal: dict) -> dict[str, str]:
    """value -> id for every enabled app role that applications can hold."""
    roles = {}
    for role in service_principal.get("appRoles") or []:
        if "Application" not in (role.get("allowedMemberTypes") or []):
            continue
        if role.get("isEnabled", True) is False:
            continue
        if value := role.get("value"):
            roles[value] = role["id"]
    return roles


def resolve_permissions(
    graph: GraphClient,
    permission_names: list[str],
    audit: AuditLog,
    scenario: str | None = None,
) -> RequiredPermissionSet:
    """
    Build the permission set for an app.

    Unknown names are logged as warnings; if none of the names resolve the
    call fails, since an app without Graph permissions is useless here.
    """
    with audit.function("Resolve-Permissions"):
        graph_sp = graph.get_service_principal_by_name(GRAPH_DISPLAY_NAME)
        catalog = _application_roles(graph_sp)

        access: list[ResourceAccess] = []
        matched: list[str] = []
        for name in permission_names:
            role_id = catalog.get(name)
            if role_id is None:
                audit.log(f"Permission '{name}' not found in {GRAPH_DISPLAY_NAME} application roles.", "Warning")
                continue
            if name in matched:
                continue
            access.append(ResourceAccess(id=role_id))
            matched.append(name)
            audit.log(f"Resolved {name} -> {role_id}")

        if not access:
            raise NotFoundError(
                f"None of the requested permissions ({', '.join(permission_names) or 'none'}) "
                f"were found on {GRAPH_DISPLAY_NAME}."
            )

        permissions = RequiredPermissionSet()
        permissions.add(
            ResourceAccessBlock(
                kind=ResourceKind.GRAPH,
                resource_app_id=graph_sp.get("appId", GRAPH_APP_ID),
                resource_access=access,
                scope_names=matched,
            )
        )

        if scenario == AUDIT_SCENARIO:
            permissions.add(_fixed_block(SHAREPOINT_AUDIT_BLOCK))
            permissions.add(_fixed_block(EXCHANGE_AUDIT_BLOCK))
            audit.log(f"Added SharePoint and Exchange resource blocks for scenario {scenario}.")
        elif scenario:
            audit.log(f"Scenario '{scenario}' has no additional resource blocks.", "Warning")

        return permissions
