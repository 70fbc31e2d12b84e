"""
Publish workflows for the three app kinds.

Each workflow is two-phase: plan_*() validates input and inspects the
certificate store and vault without changing anything, returning a
PublishPlan the caller can show for confirmation; apply() then connects,
resolves permissions, provisions the certificate, registers the app, grants
consent, runs the scenario-specific steps and stores the result in the vault.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .audit_log import AuditLog
from .auth import PUBLISH_SCOPES, ExchangeSession, GraphSession
from .certificates import CertificatePlan, CertificateProvider, CertificateStore
from .config import ToolkitConfig
from .errors import ConflictError, ValidationError
from .models import (
    EXPORT_POLICIES,
    NON_EXPORTABLE,
    AppResult,
    AuditAppResult,
    EmailAppResult,
    MemAppResult,
)
from .naming import build_app_name, secret_name_for
from .permissions import (
    AUDIT_PERMISSIONS,
    AUDIT_SCENARIO,
    EMAIL_PERMISSIONS,
    MEM_READ_PERMISSIONS,
    MEM_READWRITE_PERMISSIONS,
    ResourceKind,
    resolve_permissions,
)
from .registration import (
    AUDIT_DIRECTORY_ROLES,
    GRANT_DELAY_SECONDS,
    assign_directory_roles,
    grant_permissions,
    register_application,
)
from .validation import validate_email
from .vault import SecretVault, store_secret

EMAIL_APP = "EmailApp"
AUDIT_APP = "AuditApp"
MEM_APP = "MemPolicyApp"

AUDIT_NAME_SCENARIO = "Audit"
MEM_NAME_SCENARIO = "MemPolicy"


@dataclass
class PublishContext:
    """Everything a publish workflow talks to, passed in explicitly."""

    config: ToolkitConfig
    audit: AuditLog
    graph_session: GraphSession
    store: CertificateStore
    vault: SecretVault
    exchange_session: ExchangeSession | None = None
    grant_delay: float = GRANT_DELAY_SECONDS


@dataclass
class PublishPlan:
    kind: str
    app_name: str
    secret_name: str
    vault_name: str
    certificate: CertificatePlan
    permission_names: list[str]
    export_policy: str = NON_EXPORTABLE
    scenario: str | None = None
    overwrite_secret: bool = False
    secret_exists: bool = False
    replace_existing_cert: bool = False
    directory_roles: list[str] = field(default_factory=list)
    authorized_sender: str = ""
    sending_group: str = ""
    permission_set: str = ""
    notes: str = ""

    def describe(self) -> list[tuple[str, str]]:
        """Human-readable list of pending changes."""
        cert = self.certificate
        if cert.action == "reuse":
            cert_text = f"Reuse certificate {cert.thumbprint}"
        elif cert.action == "replace":
            cert_text = f"Remove {', '.join(cert.replaces)} and create new {cert.subject} ({self.export_policy})"
        else:
            cert_text = f"Create self-signed certificate {cert.subject} ({self.export_policy})"
        rows = [
            ("App registration", f"Create {self.app_name}"),
            ("Certificate", cert_text),
            ("Graph permissions", ", ".join(self.permission_names)),
        ]
        if self.scenario == AUDIT_SCENARIO:
            rows.append(("Extra resources", "SharePoint Online, Exchange Online"))
        if self.directory_roles:
            rows.append(("Directory roles", ", ".join(self.directory_roles)))
        if self.sending_group:
            rows.append(
                ("Exchange", f"Add {self.authorized_sender} to {self.sending_group}; restrict app to that group")
            )
        secret_text = f"Store {self.secret_name} in vault {self.vault_name}"
        if self.secret_exists:
            secret_text += " (overwrite existing)" if self.overwrite_secret else " (EXISTS - will fail)"
        rows.append(("Vault secret", secret_text))
        return rows


def _check_export_policy(export_policy: str) -> None:
    if export_policy not in EXPORT_POLICIES:
        raise ValidationError(f"Export policy must be one of {', '.join(EXPORT_POLICIES)}.")


def _base_plan(
    ctx: PublishContext,
    kind: str,
    app_name: str,
    permission_names: list[str],
    cert_thumbprint: str | None,
    export_policy: str,
    overwrite_secret: bool,
    replace_existing_cert: bool,
) -> PublishPlan:
    _check_export_policy(export_policy)
    secret_name = secret_name_for(app_name)
    provider = CertificateProvider(ctx.store, ctx.audit)
    cert_plan = provider.plan(secret_name, cert_thumbprint, replace_existing_cert)
    secret_exists = ctx.vault.exists(secret_name)
    if secret_exists and not overwrite_secret:
        ctx.audit.log(f"Secret '{secret_name}' already exists in vault '{ctx.vault.name}'.", "Warning")
    return PublishPlan(
        kind=kind,
        app_name=app_name,
        secret_name=secret_name,
        vault_name=ctx.vault.name,
        certificate=cert_plan,
        permission_names=list(permission_names),
        export_policy=export_policy,
        overwrite_secret=overwrite_secret,
        secret_exists=secret_exists,
        replace_existing_cert=replace_existing_cert,
    )


def plan_email_app(
    ctx: PublishContext,
    prefix: str,
    authorized_sender: str,
    sending_group: str,
    cert_thumbprint: str | None = None,
    export_policy: str = NON_EXPORTABLE,
    overwrite_secret: bool = False,
    replace_existing_cert: bool = False,
    include_domain_suffix: bool = True,
) -> PublishPlan:
    """Plan an app that sends mail as authorized_sender, restricted to sending_group."""
    validate_email(authorized_sender)
    validate_email(sending_group)
    app_name = build_app_name(
        prefix,
        user_email=authorized_sender,
        include_domain_suffix=include_domain_suffix,
        domain_suffix=ctx.config.domain_suffix or None,
    )
    plan = _base_plan(
        ctx, EMAIL_APP, app_name, EMAIL_PERMISSIONS,
        cert_thumbprint, export_policy, overwrite_secret, replace_existing_cert,
    )
    plan.authorized_sender = authorized_sender
    plan.sending_group = sending_group
    plan.notes = f"Sends mail as {authorized_sender}; mailbox access restricted to {sending_group}."
    return plan


def plan_audit_app(
    ctx: PublishContext,
    prefix: str,
    cert_thumbprint: str | None = None,
    export_policy: str = NON_EXPORTABLE,
    overwrite_secret: bool = False,
    replace_existing_cert: bool = False,
    include_domain_suffix: bool = True,
) -> PublishPlan:
    app_name = build_app_name(
        prefix,
        scenario=AUDIT_NAME_SCENARIO,
        include_domain_suffix=include_domain_suffix,
        domain_suffix=ctx.config.domain_suffix or None,
    )
    plan = _base_plan(
        ctx, AUDIT_APP, app_name, AUDIT_PERMISSIONS,
        cert_thumbprint, export_policy, overwrite_secret, replace_existing_cert,
    )
    plan.scenario = AUDIT_SCENARIO
    plan.directory_roles = list(AUDIT_DIRECTORY_ROLES)
    plan.notes = "Read-only M365 tenant audit app."
    return plan


def plan_mem_app(
    ctx: PublishContext,
    prefix: str,
    read_write: bool = False,
    cert_thumbprint: str | None = None,
    export_policy: str = NON_EXPORTABLE,
    overwrite_secret: bool = False,
    replace_existing_cert: bool = False,
    include_domain_suffix: bool = True,
) -> PublishPlan:
    app_name = build_app_name(
        prefix,
        scenario=MEM_NAME_SCENARIO,
        include_domain_suffix=include_domain_suffix,
        domain_suffix=ctx.config.domain_suffix or None,
    )
    names = MEM_READWRITE_PERMISSIONS if read_write else MEM_READ_PERMISSIONS
    plan = _base_plan(
        ctx, MEM_APP, app_name, names,
        cert_thumbprint, export_policy, overwrite_secret, replace_existing_cert,
    )
    plan.permission_set = "ReadWrite" if read_write else "ReadOnly"
    plan.notes = f"Intune / MEM policy management app ({plan.permission_set})."
    return plan


def _configure_sending_group(ctx: PublishContext, plan: PublishPlan, app_id: str) -> None:
    if ctx.exchange_session is None:
        raise ValidationError("An Exchange Online session is required to publish an email app.")
    exchange = ctx.exchange_session.connect()
    with ctx.audit.function("Set-EmailAppPolicy"):
        members = exchange.get_distribution_group_members(plan.sending_group)
        addresses = {
            (m.get("PrimarySmtpAddress") or m.get("WindowsLiveID") or "").lower() for m in members
        }
        if plan.authorized_sender.lower() in addresses:
            ctx.audit.log(f"{plan.authorized_sender} is already a member of {plan.sending_group}.")
        else:
            exchange.add_distribution_group_member(plan.sending_group, plan.authorized_sender)
            ctx.audit.log(f"Added {plan.authorized_sender} to {plan.sending_group}.", "Information")
        exchange.new_application_access_policy(
            app_id,
            plan.sending_group,
            f"Restrict {plan.app_name} to members of {plan.sending_group}",
        )
        ctx.audit.log(f"Created application access policy for {app_id} scoped to {plan.sending_group}.", "Information")
        access = exchange.test_application_access_policy(app_id, plan.authorized_sender)
        # A policy created seconds ago can still report Denied.
        ctx.audit.log(f"Access check for {plan.authorized_sender}: {access or 'unknown'}.")


def apply(ctx: PublishContext, plan: PublishPlan) -> AppResult:
    """Carry out a plan. Nothing is rolled back if a later step fails."""
    audit = ctx.audit
    with audit.function(f"Publish-{plan.kind}"):
        if not plan.overwrite_secret and ctx.vault.exists(plan.secret_name):
            raise ConflictError(
                f"Secret '{plan.secret_name}' already exists in vault '{plan.vault_name}'. "
                "Use the overwrite option to replace it."
            )

        graph = ctx.graph_session.connect(PUBLISH_SCOPES)
        tenant_id = ctx.graph_session.tenant_id

        if plan.kind == EMAIL_APP:
            graph.get_user(plan.authorized_sender)
            audit.log(f"Verified authorized sender {plan.authorized_sender}.")

        permissions = resolve_permissions(graph, plan.permission_names, audit, scenario=plan.scenario)

        certificate = CertificateProvider(ctx.store, audit).resolve(
            subject=plan.certificate.subject,
            thumbprint=plan.certificate.thumbprint or None,
            export_policy=plan.export_policy,
            replace_existing=plan.replace_existing_cert,
        )

        application = register_application(
            graph, ctx.store, plan.app_name, certificate, permissions, audit, notes=plan.notes,
        )
        grant = grant_permissions(
            graph, application, permissions, tenant_id, audit, delay_seconds=ctx.grant_delay,
        )

        common = dict(
            display_name=plan.app_name,
            app_id=application["appId"],
            object_id=application["id"],
            tenant_id=tenant_id,
            certificate_thumbprint=certificate.thumbprint,
            certificate_expiry=certificate.expiry,
            certificate_store_location=ctx.store.location,
            consent_url=grant.consent_url,
            notes=plan.notes,
        )

        if plan.kind == EMAIL_APP:
            _configure_sending_group(ctx, plan, application["appId"])
            result: AppResult = EmailAppResult(
                **common,
                authorized_sender=plan.authorized_sender,
                sending_group=plan.sending_group,
            )
        elif plan.kind == AUDIT_APP:
            roles = assign_directory_roles(graph, grant.service_principal_id, plan.directory_roles, audit)
            result = AuditAppResult(**common, directory_roles=tuple(roles))
        elif plan.kind == MEM_APP:
            result = MemAppResult(
                **common,
                permission_set=plan.permission_set,
                permissions=tuple(permissions.get(ResourceKind.GRAPH).scope_names),
            )
        else:
            raise ValidationError(f"Unknown app kind {plan.kind!r}.")

        store_secret(plan.secret_name, result, ctx.vault, audit, overwrite=plan.overwrite_secret)
        audit.log(f"Published {plan.app_name}. Grant admin consent at {grant.consent_url}", "Information")
        return result
