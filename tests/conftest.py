"""
Shared fixtures and in-memory fakes for the Graph, Exchange and token layers.

No network calls are made anywhere in the test suite.
"""

from __future__ import annotations

import pytest

from graph_app_toolkit.audit_log import AuditLog
from graph_app_toolkit.auth import ExchangeSession, GraphSession
from graph_app_toolkit.certificates import CertificateStore
from graph_app_toolkit.config import ToolkitConfig
from graph_app_toolkit.errors import NotFoundError
from graph_app_toolkit.permissions import EXCHANGE_APP_ID, GRAPH_APP_ID, SHAREPOINT_APP_ID
from graph_app_toolkit.publish import PublishContext
from graph_app_toolkit.vault import SecretVault

TENANT_ID = "11111111-2222-3333-4444-555555555555"


def _role(role_id: str, value: str, member_types: list[str] | None = None) -> dict:
    return {
        "id": role_id,
        "value": value,
        "allowedMemberTypes": member_types if member_types is not None else ["Application"],
        "isEnabled": True,
    }


GRAPH_APP_ROLES = [
    _role("12345", "Mail.Send"),
    _role("df021288-bdef-4463-88db-98f22de89214", "User.Read.All"),
    _role("7ab1d382-f21e-4acd-a863-ba3e13f7da61", "Directory.Read.All"),
    _role("b0afded3-3588-46d8-8b3d-9842eff778da", "AuditLog.Read.All"),
    _role("dc377aa6-52d8-4e23-b271-2a7ae04cedf3", "DeviceManagementConfiguration.Read.All"),
    _role("9241abd9-d0e6-425a-bd4f-47ba86e767a4", "DeviceManagementConfiguration.ReadWrite.All"),
    _role("5b567255-7703-4780-807c-7be8301ae99b", "Group.Read.All"),
    _role("62a82d76-70ea-41e2-9197-370581804d09", "Group.ReadWrite.All"),
    _role("e383f46e-2787-4529-855e-0e479a3ffac0", "Mail.Send.Delegated", ["User"]),
]


class FakeGraph:
    """Records every mutating call; lookups are served from in-memory dicts."""

    def __init__(self, app_roles: list[dict] | None = None) -> None:
        self.app_roles = GRAPH_APP_ROLES if app_roles is None else app_roles
        self.service_principals = {
            GRAPH_APP_ID: {"id": "sp-graph", "appId": GRAPH_APP_ID, "displayName": "Microsoft Graph"},
            SHAREPOINT_APP_ID: {"id": "sp-spo", "appId": SHAREPOINT_APP_ID, "displayName": "Office 365 SharePoint Online"},
            EXCHANGE_APP_ID: {"id": "sp-exo", "appId": EXCHANGE_APP_ID, "displayName": "Office 365 Exchange Online"},
        }
        self.users = {"helpdesk@contoso.com": {"id": "user-1", "userPrincipalName": "helpdesk@contoso.com"}}
        self.active_roles = {"Global Reader": {"id": "role-gr", "displayName": "Global Reader"}}
        self.applications: list[dict] = []
        self.created_sps: list[str] = []
        self.grants: list[dict] = []
        self.activated_roles: list[str] = []
        self.role_members: list[tuple[str, str]] = []
        self.sent_mail: list[tuple[str, dict, bool]] = []
        self.org_calls = 0
        self.fail_probe = False
        self.probe_error: Exception | None = None

    def get_organization(self) -> dict:
        self.org_calls += 1
        if self.fail_probe:
            raise PermissionError("token expired")
        if self.probe_error is not None:
            raise self.probe_error
        return {"id": TENANT_ID, "displayName": "Contoso"}

    def get_user(self, user_id: str) -> dict:
        if user_id not in self.users:
            raise NotFoundError(f"User {user_id} not found.")
        return self.users[user_id]

    def get_service_principal_by_name(self, display_name: str) -> dict:
        if display_name != "Microsoft Graph":
            raise NotFoundError(display_name)
        return {**self.service_principals[GRAPH_APP_ID], "appRoles": self.app_roles}

    def get_service_principal_by_app_id(self, app_id: str) -> dict:
        if app_id not in self.service_principals:
            raise NotFoundError(f"Service principal for appId {app_id} not found.")
        return self.service_principals[app_id]

    def create_application(self, body: dict) -> dict:
        n = len(self.applications) + 1
        app = {**body, "id": f"obj-{n}", "appId": f"app-{n}"}
        self.applications.append(app)
        return app

    def create_service_principal(self, app_id: str) -> dict:
        self.created_sps.append(app_id)
        return {"id": f"sp-for-{app_id}", "appId": app_id}

    def create_oauth2_permission_grant(self, client_id, resource_id, scope, consent_type="AllPrincipals") -> dict:
        grant = {"clientId": client_id, "resourceId": resource_id, "scope": scope, "consentType": consent_type}
        self.grants.append(grant)
        return grant

    def get_directory_role(self, display_name: str) -> dict | None:
        return self.active_roles.get(display_name)

    def activate_directory_role(self, display_name: str) -> dict:
        self.activated_roles.append(display_name)
        role = {"id": f"role-{len(self.activated_roles)}", "displayName": display_name}
        self.active_roles[display_name] = role
        return role

    def add_directory_role_member(self, role_id: str, principal_id: str) -> None:
        self.role_members.append((role_id, principal_id))

    def send_mail(self, sender: str, message: dict, save_to_sent_items: bool = True) -> None:
        self.sent_mail.append((sender, message, save_to_sent_items))


class FakeExchange:
    def __init__(self) -> None:
        self.recipients: dict[str, dict] = {}
        self.group_members: dict[str, list[dict]] = {}
        self.groups: list[dict] = []
        self.hidden: list[str] = []
        self.policies: list[dict] = []
        self.probe_calls = 0
        self.probe_error: Exception | None = None

    def get_organization_config(self) -> dict:
        self.probe_calls += 1
        if self.probe_error is not None:
            raise self.probe_error
        return {"Name": "contoso.onmicrosoft.com"}

    def get_recipient(self, identity: str) -> dict:
        if identity not in self.recipients:
            raise NotFoundError(f"Recipient {identity} not found.")
        return self.recipients[identity]

    def new_distribution_group(self, name, alias, primary_smtp_address) -> dict:
        group = {"Name": name, "Alias": alias, "PrimarySmtpAddress": primary_smtp_address}
        self.groups.append(group)
        self.recipients[primary_smtp_address] = group
        return group

    def hide_from_address_lists(self, identity: str) -> None:
        self.hidden.append(identity)

    def get_distribution_group_members(self, identity: str) -> list[dict]:
        return self.group_members.setdefault(identity, [])

    def add_distribution_group_member(self, identity: str, member: str) -> None:
        self.group_members.setdefault(identity, []).append({"PrimarySmtpAddress": member})

    def new_application_access_policy(self, app_id, group, description) -> dict:
        policy = {"AppId": app_id, "ScopeName": group, "Description": description}
        self.policies.append(policy)
        return policy

    def test_application_access_policy(self, app_id, identity) -> str:
        groups = [p["ScopeName"] for p in self.policies if p["AppId"] == app_id]
        members = [m["PrimarySmtpAddress"].lower() for g in groups for m in self.group_members.get(g, [])]
        return "Granted" if identity.lower() in members else "Denied"


class FakeTokenProvider:
    def __init__(self, scopes: str = "", tenant_id: str = TENANT_ID, error: Exception | None = None) -> None:
        self.scopes = scopes
        self.tenant_id = tenant_id
        self.error = error
        self.acquired: list[list[str]] = []
        self.sign_outs = 0

    def acquire(self, scopes: list[str]) -> dict:
        self.acquired.append(list(scopes))
        if self.error is not None:
            raise self.error
        granted = self.scopes or " ".join(s.rsplit("/", 1)[-1] for s in scopes)
        return {
            "access_token": f"token-{len(self.acquired)}",
            "scope": granted,
            "id_token_claims": {"tid": self.tenant_id},
        }

    def sign_out(self) -> None:
        self.sign_outs += 1


@pytest.fixture
def audit() -> AuditLog:
    log = AuditLog()
    log.start("test")
    return log


@pytest.fixture
def store(tmp_path) -> CertificateStore:
    return CertificateStore(tmp_path / "certs", "CurrentUser")


@pytest.fixture
def vault(tmp_path) -> SecretVault:
    return SecretVault(tmp_path / "vaults", "TestVault")


@pytest.fixture
def fake_graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
def fake_exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture
def graph_session(fake_graph, audit) -> GraphSession:
    return GraphSession(FakeTokenProvider(), audit, client_factory=lambda token: fake_graph)


@pytest.fixture
def exchange_session(fake_exchange, audit) -> ExchangeSession:
    return ExchangeSession(FakeTokenProvider(), audit, client_factory=lambda token, tenant: fake_exchange)


@pytest.fixture
def publish_ctx(tmp_path, audit, graph_session, exchange_session, store, vault) -> PublishContext:
    config = ToolkitConfig(home_dir=str(tmp_path), domain_suffix="CONTOSO")
    return PublishContext(
        config=config,
        audit=audit,
        graph_session=graph_session,
        store=store,
        vault=vault,
        exchange_session=exchange_session,
        grant_delay=0,
    )
