"""
GraphAppToolkit CLI entrypoint.

Usage:
    graph-app-toolkit COMMAND [OPTIONS]
    python -m graph_app_toolkit.cli COMMAND [OPTIONS]
"""

from __future__ import annotations

import functools
import json
import sys
from pathlib import Path
from typing import Callable

import click
import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .audit_log import AuditLog
from .auth import DeviceCodeTokenProvider, ExchangeSession, GraphSession
from .certificates import STORE_LOCATIONS, CertificateStore
from .config import ToolkitConfig, load_config
from .errors import ToolkitError, ValidationError
from .mail import create_mail_group, send_email
from .models import EXPORT_POLICIES, NON_EXPORTABLE
from .publish import PublishContext, PublishPlan, apply, plan_audit_app, plan_email_app, plan_mem_app
from .splat import format_param_splat
from .validation import validate_email, validate_prefix, validate_thumbprint
from .vault import SecretVault

console = Console()


def _validator(fn: Callable[[str], str], multiple: bool = False):
    """Turn a validation function into a click callback."""

    def callback(ctx, param, value):
        if value is None or value == ():
            return value
        try:
            if multiple:
                return tuple(fn(v) for v in value)
            return fn(value)
        except ValidationError as exc:
            raise click.BadParameter(str(exc)) from exc

    return callback


def _error_panel(exc: Exception) -> None:
    console.print(
        Panel(
            f"[red]{exc}[/red]",
            title=f"[red]{type(exc).__name__}[/red]",
            border_style="red",
        )
    )


def _audited(command_name: str):
    """Start/end the audit log around a command and turn toolkit errors into exit code 1."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, log_file: Path | None, verbose: bool, **kwargs):
            audit = AuditLog(console=console, verbose=verbose)
            audit.start(command_name)
            try:
                fn(*args, audit=audit, **kwargs)
            except click.exceptions.Abort:
                audit.log("Aborted by operator.", "Warning")
                raise
            except (ToolkitError, PermissionError, RuntimeError, requests.RequestException) as exc:
                audit.log(str(exc), "Error")
                _error_panel(exc)
                sys.exit(1)
            finally:
                written = audit.end(log_file)
                if written:
                    console.print(f"[dim]Audit log written to {written}[/dim]")

        wrapper = click.option(
            "--log-file",
            default=None,
            type=click.Path(dir_okay=False, path_type=Path),
            metavar="CSV",
            help="Export the audit log of this run to a CSV file.",
        )(wrapper)
        wrapper = click.option("--verbose", "-v", is_flag=True, default=False, help="Echo verbose audit entries.")(
            wrapper
        )
        return wrapper

    return decorator


def _config_option(fn):
    return click.option(
        "--config",
        "config_path",
        default=None,
        type=click.Path(exists=False, dir_okay=False, path_type=Path),
        metavar="PATH",
        help="Path to graph_app_toolkit_config.json (default: ./graph_app_toolkit_config.json).",
    )(fn)


def _publish_options(fn):
    """Options shared by the three publish commands."""
    options = [
        click.option(
            "--app-prefix",
            required=True,
            callback=_validator(validate_prefix),
            metavar="PREFIX",
            help="2-4 upper-case letters or digits used in the app name (e.g. MSN).",
        ),
        click.option(
            "--cert-thumbprint",
            default=None,
            callback=_validator(validate_thumbprint),
            metavar="THUMBPRINT",
            help="Use an existing certificate (40 hex chars). A new one is created if omitted.",
        ),
        click.option(
            "--key-export-policy",
            default=NON_EXPORTABLE,
            show_default=True,
            type=click.Choice(EXPORT_POLICIES),
            help="Export policy for a newly created certificate.",
        ),
        click.option(
            "--cert-store-location",
            default=None,
            type=click.Choice(STORE_LOCATIONS),
            help="Certificate store location (default from config: CurrentUser).",
        ),
        click.option(
            "--replace-existing-cert",
            is_flag=True,
            default=False,
            help="If a certificate with the app's subject exists, remove it and create a new one.",
        ),
        click.option("--vault-name", default=None, metavar="NAME", help="Secret vault to store the app details in."),
        click.option(
            "--overwrite-vault-secret",
            is_flag=True,
            default=False,
            help="Replace an existing secret with the same name.",
        ),
        click.option(
            "--return-param-splat",
            is_flag=True,
            default=False,
            help="Print the result as a PowerShell parameter splat instead of JSON.",
        ),
        click.option(
            "--no-domain-suffix",
            is_flag=True,
            default=False,
            help="Leave the domain suffix out of the app name.",
        ),
        click.option("--yes", "-y", is_flag=True, default=False, help="Do not ask for confirmation."),
        _config_option,
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def build_publish_context(
    config: ToolkitConfig, audit: AuditLog, vault_name: str | None, need_exchange: bool
) -> PublishContext:
    graph_session = GraphSession(DeviceCodeTokenProvider(config.client_id, config.tenant_id), audit)
    exchange_session = None
    if need_exchange:
        exchange_session = ExchangeSession(
            DeviceCodeTokenProvider(config.exchange_client_id, config.tenant_id),
            audit,
            tenant_id="" if config.tenant_id == "organizations" else config.tenant_id,
        )
    return PublishContext(
        config=config,
        audit=audit,
        graph_session=graph_session,
        store=CertificateStore(config.cert_store_dir, config.cert_store_location),
        vault=SecretVault(config.vault_dir, vault_name or config.default_vault_name),
        exchange_session=exchange_session,
    )


def build_exchange_session(config: ToolkitConfig, audit: AuditLog) -> ExchangeSession:
    return ExchangeSession(
        DeviceCodeTokenProvider(config.exchange_client_id, config.tenant_id),
        audit,
        tenant_id="" if config.tenant_id == "organizations" else config.tenant_id,
    )


def _show_plan(plan: PublishPlan) -> None:
    table = Table(title=f"Pending changes — {plan.app_name}", show_header=True, header_style="bold")
    table.add_column("Item", style="bold")
    table.add_column("Change")
    for item, change in plan.describe():
        style = "bold red" if "EXISTS" in change or change.startswith("Remove") else None
        table.add_row(item, change, style=style)
    console.print(table)


def _publish(
    audit: AuditLog,
    planner: Callable[[PublishContext], PublishPlan],
    config_path: Path | None,
    vault_name: str | None,
    cert_store_location: str | None,
    return_param_splat: bool,
    yes: bool,
    need_exchange: bool = False,
) -> None:
    config = load_config(config_path, cert_store_location=cert_store_location)
    ctx = build_publish_context(config, audit, vault_name, need_exchange)
    plan = planner(ctx)
    _show_plan(plan)
    if not yes:
        click.confirm("Apply these changes to the tenant?", default=False, abort=True)

    result = apply(ctx, plan)

    console.print(
        Panel(
            "\n".join(
                [
                    f"[bold green]{result.display_name} published.[/bold green]",
                    "",
                    f"[bold]App ID:[/bold]      {result.app_id}",
                    f"[bold]Thumbprint:[/bold]  {result.certificate_thumbprint}",
                    f"[bold]Vault secret:[/bold] {plan.secret_name} ({plan.vault_name})",
                    "",
                    "[bold yellow]Grant admin consent:[/bold yellow]",
                    f"  [cyan underline]{result.consent_url}[/cyan underline]",
                ]
            ),
            title="[bold cyan]GraphAppToolkit[/bold cyan]",
            border_style="cyan",
        )
    )
    if return_param_splat:
        click.echo(format_param_splat(result))
    else:
        click.echo(json.dumps(result.to_dict(), indent=2))


@click.group()
@click.version_option(__version__, "--version", "-V")
def main() -> None:
    """
    GraphAppToolkit: Entra ID app registrations for Microsoft 365 automation.

    Publishes certificate-authenticated apps for Graph email sending, M365
    auditing and Intune policy management, and sends mail through them.
    """


@main.command("create-mail-group")
@click.option("--name", required=True, help="Display name of the mail-enabled security group.")
@click.option("--alias", required=True, help="Mail alias (single word).")
@click.option(
    "--primary-smtp-address",
    required=True,
    callback=_validator(validate_email),
    metavar="EMAIL",
    help="Primary SMTP address of the group.",
)
@_config_option
@_audited("create-mail-group")
def create_mail_group_cmd(
    name: str, alias: str, primary_smtp_address: str, config_path: Path | None, audit: AuditLog
) -> None:
    """Create the mail-enabled security group an email app is restricted to."""
    config = load_config(config_path)
    group = create_mail_group(build_exchange_session(config, audit), audit, name, alias, primary_smtp_address)
    click.echo(json.dumps(group, indent=2))


@main.command("publish-email-app")
@click.option(
    "--authorized-sender",
    required=True,
    callback=_validator(validate_email),
    metavar="EMAIL",
    help="Mailbox the app sends as.",
)
@click.option(
    "--mail-enabled-sending-group",
    required=True,
    callback=_validator(validate_email),
    metavar="EMAIL",
    help="Mail-enabled security group the app's mailbox access is restricted to.",
)
@_publish_options
@_audited("publish-email-app")
def publish_email_app_cmd(
    app_prefix: str,
    authorized_sender: str,
    mail_enabled_sending_group: str,
    cert_thumbprint: str | None,
    key_export_policy: str,
    cert_store_location: str | None,
    replace_existing_cert: bool,
    vault_name: str | None,
    overwrite_vault_secret: bool,
    return_param_splat: bool,
    no_domain_suffix: bool,
    yes: bool,
    config_path: Path | None,
    audit: AuditLog,
) -> None:
    """Publish an app that sends mail through Microsoft Graph with a certificate."""
    _publish(
        audit,
        lambda ctx: plan_email_app(
            ctx,
            app_prefix,
            authorized_sender,
            mail_enabled_sending_group,
            cert_thumbprint=cert_thumbprint,
            export_policy=key_export_policy,
            overwrite_secret=overwrite_vault_secret,
            replace_existing_cert=replace_existing_cert,
            include_domain_suffix=not no_domain_suffix,
        ),
        config_path,
        vault_name,
        cert_store_location,
        return_param_splat,
        yes,
        need_exchange=True,
    )


@main.command("publish-audit-app")
@_publish_options
@_audited("publish-audit-app")
def publish_audit_app_cmd(
    app_prefix: str,
    cert_thumbprint: str | None,
    key_export_policy: str,
    cert_store_location: str | None,
    replace_existing_cert: bool,
    vault_name: str | None,
    overwrite_vault_secret: bool,
    return_param_splat: bool,
    no_domain_suffix: bool,
    yes: bool,
    config_path: Path | None,
    audit: AuditLog,
) -> None:
    """Publish a read-only M365 audit app (Graph, SharePoint, Exchange)."""
    _publish(
        audit,
        lambda ctx: plan_audit_app(
            ctx,
            app_prefix,
            cert_thumbprint=cert_thumbprint,
            export_policy=key_export_policy,
            overwrite_secret=overwrite_vault_secret,
            replace_existing_cert=replace_existing_cert,
            include_domain_suffix=not no_domain_suffix,
        ),
        config_path,
        vault_name,
        cert_store_location,
        return_param_splat,
        yes,
    )


@main.command("publish-mem-app")
@click.option(
    "--read-write",
    is_flag=True,
    default=False,
    help="Grant ReadWrite Intune permissions instead of read-only.",
)
@_publish_options
@_audited("publish-mem-app")
def publish_mem_app_cmd(
    app_prefix: str,
    read_write: bool,
    cert_thumbprint: str | None,
    key_export_policy: str,
    cert_store_location: str | None,
    replace_existing_cert: bool,
    vault_name: str | None,
    overwrite_vault_secret: bool,
    return_param_splat: bool,
    no_domain_suffix: bool,
    yes: bool,
    config_path: Path | None,
    audit: AuditLog,
) -> None:
    """Publish an Intune / MEM policy management app."""
    _publish(
        audit,
        lambda ctx: plan_mem_app(
            ctx,
            app_prefix,
            read_write=read_write,
            cert_thumbprint=cert_thumbprint,
            export_policy=key_export_policy,
            overwrite_secret=overwrite_vault_secret,
            replace_existing_cert=replace_existing_cert,
            include_domain_suffix=not no_domain_suffix,
        ),
        config_path,
        vault_name,
        cert_store_location,
        return_param_splat,
        yes,
    )


@main.command("send-email")
@click.option("--app-name", required=True, help="Name of the published email app (its vault secret is CN=<name>).")
@click.option(
    "--to", "to", required=True, multiple=True, callback=_validator(validate_email, multiple=True),
    metavar="EMAIL", help="Recipient; repeat for several.",
)
@click.option("--cc", multiple=True, callback=_validator(validate_email, multiple=True), metavar="EMAIL")
@click.option("--bcc", multiple=True, callback=_validator(validate_email, multiple=True), metavar="EMAIL")
@click.option("--subject", required=True)
@click.option("--body", default=None, help="Message body.")
@click.option(
    "--body-file",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read the message body from a file.",
)
@click.option("--html", is_flag=True, default=False, help="Send the body as HTML.")
@click.option(
    "--attachment",
    "attachments",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="File to attach; repeat for several.",
)
@click.option(
    "--sender", default=None, callback=_validator(validate_email), metavar="EMAIL",
    help="Send as this mailbox instead of the app's authorized sender.",
)
@click.option("--vault-name", default=None, metavar="NAME")
@click.option("--no-save-to-sent", is_flag=True, default=False, help="Do not keep a copy in Sent Items.")
@_config_option
@_audited("send-email")
def send_email_cmd(
    app_name: str,
    to: tuple[str, ...],
    cc: tuple[str, ...],
    bcc: tuple[str, ...],
    subject: str,
    body: str | None,
    body_file: Path | None,
    html: bool,
    attachments: tuple[Path, ...],
    sender: str | None,
    vault_name: str | None,
    no_save_to_sent: bool,
    config_path: Path | None,
    audit: AuditLog,
) -> None:
    """Send mail through a published email app."""
    if body is None and body_file is None:
        raise click.UsageError("Pass --body or --body-file.")
    if body_file is not None:
        body = body_file.read_text(encoding="utf-8")

    config = load_config(config_path)
    summary = send_email(
        vault=SecretVault(config.vault_dir, vault_name or config.default_vault_name),
        store=CertificateStore(config.cert_store_dir, config.cert_store_location),
        audit=audit,
        app_name=app_name,
        to=list(to),
        subject=subject,
        body=body,
        cc=list(cc),
        bcc=list(bcc),
        attachments=list(attachments),
        html=html,
        sender=sender,
        save_to_sent_items=not no_save_to_sent,
    )
    console.print(f"[green]Mail sent from {summary['sender']} to {', '.join(summary['to'])}.[/green]")


if __name__ == "__main__":
    main()
