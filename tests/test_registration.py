"""
Unit tests for graph_app_toolkit/registration.py.
"""

import base64
from datetime import datetime, timezone

import pytest

from graph_app_toolkit.certificates import CertificateProvider
from graph_app_toolkit.errors import ConflictError, ValidationError
from graph_app_toolkit.models import CertificateDescriptor
from graph_app_toolkit.permissions import (
    ResourceAccess,
    ResourceAccessBlock,
    ResourceKind,
    RequiredPermissionSet,
    resolve_permissions,
)
from graph_app_toolkit.registration import (
    admin_consent_url,
    assign_directory_roles,
    grant_permissions,
    register_application,
)

from .conftest import TENANT_ID


@pytest.fixture
def certificate(store, audit):
    return CertificateProvider(store, audit).resolve("CN=GraphToolKit-TST")


@pytest.fixture
def audit_permissions(fake_graph, audit):
    return resolve_permissions(fake_graph, ["Directory.Read.All", "AuditLog.Read.All"], audit, scenario="365Audit")


class TestRegisterApplication:
    def test_missing_certificate_is_fatal(self, fake_graph, store, audit, audit_permissions):
        with pytest.raises(ValidationError, match="no other methods supported yet"):
            register_application(fake_graph, store, "App", None, audit_permissions, audit)

    def test_empty_thumbprint_is_fatal(self, fake_graph, store, audit, audit_permissions):
        desc = CertificateDescriptor(thumbprint="", subject="CN=x", not_after=datetime.now(timezone.utc))
        with pytest.raises(ValidationError):
            register_application(fake_graph, store, "App", desc, audit_permissions, audit)

    def test_body_carries_key_credential_and_permissions(
        self, fake_graph, store, audit, certificate, audit_permissions
    ):
        app = register_application(
            fake_graph, store, "GraphToolKit-TST", certificate, audit_permissions, audit, notes="hello"
        )
        body = fake_graph.applications[0]
        assert app["appId"] == "app-1"
        assert body["displayName"] == "GraphToolKit-TST"
        assert body["signInAudience"] == "AzureADMyOrg"
        assert body["notes"] == "hello"
        assert body["requiredResourceAccess"] == audit_permissions.to_graph()
        key = body["keyCredentials"][0]
        assert key["type"] == "AsymmetricX509Cert"
        assert key["usage"] == "Verify"
        assert base64.b64decode(key["key"]) == store.public_der(certificate.thumbprint)


class TestGrantPermissions:
    def test_one_grant_per_resource(self, fake_graph, audit, audit_permissions):
        grant = grant_permissions(fake_graph, {"id": "obj-1", "appId": "app-1"}, audit_permissions, TENANT_ID, audit, 0)
        assert [g["resourceId"] for g in fake_graph.grants] == ["sp-graph", "sp-spo", "sp-exo"]
        assert fake_graph.grants[0]["scope"] == "Directory.Read.All AuditLog.Read.All"
        assert fake_graph.grants[1]["scope"] == "Sites.Read.All Sites.FullControl.All"
        assert fake_graph.grants[2]["scope"] == "Exchange.ManageAsApp"
        assert all(g["consentType"] == "AllPrincipals" for g in fake_graph.grants)
        assert all(g["clientId"] == "sp-for-app-1" for g in fake_graph.grants)
        assert grant.service_principal_id == "sp-for-app-1"

    def test_resources_matched_by_identity_not_position(self, fake_graph, audit, audit_permissions):
        audit_permissions.blocks.reverse()
        grant_permissions(fake_graph, {"id": "obj-1", "appId": "app-1"}, audit_permissions, TENANT_ID, audit, 0)
        assert [g["resourceId"] for g in fake_graph.grants] == ["sp-exo", "sp-spo", "sp-graph"]
        assert fake_graph.grants[0]["scope"] == "Exchange.ManageAsApp"

    def test_consent_url(self, fake_graph, audit, audit_permissions):
        grant = grant_permissions(fake_graph, {"id": "obj-1", "appId": "app-1"}, audit_permissions, TENANT_ID, audit, 0)
        assert grant.consent_url == f"https://login.microsoftonline.com/{TENANT_ID}/adminconsent?client_id=app-1"
        assert grant.consent_url == admin_consent_url(TENANT_ID, "app-1")

    def test_four_resources_rejected(self, fake_graph, audit, audit_permissions):
        audit_permissions.add(
            ResourceAccessBlock(ResourceKind.GRAPH, "extra-app", [ResourceAccess("x")], ["X.Read"])
        )
        with pytest.raises(ConflictError, match="Too many resources in RequiredResourceAccessList."):
            grant_permissions(fake_graph, {"id": "obj-1", "appId": "app-1"}, audit_permissions, TENANT_ID, audit, 0)
        assert fake_graph.created_sps == []

    def test_delay_between_grants(self, fake_graph, audit, audit_permissions, monkeypatch):
        sleeps = []
        monkeypatch.setattr("graph_app_toolkit.registration.time.sleep", sleeps.append)
        grant_permissions(fake_graph, {"id": "obj-1", "appId": "app-1"}, audit_permissions, TENANT_ID, audit, 2)
        assert sleeps == [2, 2]

    def test_empty_set_only_creates_service_principal(self, fake_graph, audit):
        grant_permissions(fake_graph, {"id": "obj-1", "appId": "app-1"}, RequiredPermissionSet(), TENANT_ID, audit, 0)
        assert fake_graph.created_sps == ["app-1"]
        assert fake_graph.grants == []


class TestDirectoryRoles:
    def test_active_role_member_added(self, fake_graph, audit):
        assigned = assign_directory_roles(fake_graph, "sp-1", ["Global Reader"], audit)
        assert assigned == ["Global Reader"]
        assert fake_graph.role_members == [("role-gr", "sp-1")]
        assert fake_graph.activated_roles == []

    def test_inactive_role_activated_first(self, fake_graph, audit):
        assign_directory_roles(fake_graph, "sp-1", ["Exchange Administrator", "Global Reader"], audit)
        assert fake_graph.activated_roles == ["Exchange Administrator"]
        assert fake_graph.role_members == [("role-1", "sp-1"), ("role-gr", "sp-1")]
