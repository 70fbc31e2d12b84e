"""
Mail workflows: creating the mail-enabled sending group an email app is
restricted to, and sending mail through a published email app.
"""

from __future__ import annotations

import base64
import mimetypes
from pathlib import Path
from typing import Callable

from .audit_log import AuditLog
from .auth import CertificateTokenProvider, ExchangeSession
from .certificates import CertificateStore
from .errors import ConflictError, NotFoundError, ValidationError
from .graph import GraphClient
from .naming import secret_name_for
from .validation import validate_email
from .vault import SecretVault, read_secret

# Graph rejects inline attachments above 3 MB; larger files need an upload session.
MAX_ATTACHMENT_BYTES = 3 * 1024 * 1024


def create_mail_group(
    exchange_session: ExchangeSession,
    audit: AuditLog,
    name: str,
    alias: str,
    primary_smtp_address: str,
) -> dict:
    """Create a mail-enabled security group hidden from address lists."""
    with audit.function("New-MailEnabledSendingGroup"):
        validate_email(primary_smtp_address)
        if not alias or any(c.isspace() for c in alias):
            raise ValidationError(f"Alias {alias!r} must be a single word.")

        exchange = exchange_session.connect()
        try:
            exchange.get_recipient(primary_smtp_address)
        except NotFoundError:
            pass
        else:
            raise ConflictError(f"A recipient with address {primary_smtp_address} already exists.")

        group = exchange.new_distribution_group(name, alias, primary_smtp_address)
        exchange.hide_from_address_lists(primary_smtp_address)
        audit.log(f"Created mail-enabled security group {name} <{primary_smtp_address}>.", "Information")
        return {
            "name": group.get("Name", name),
            "alias": group.get("Alias", alias),
            "primarySmtpAddress": group.get("PrimarySmtpAddress", primary_smtp_address),
        }


def _attachment(path: Path) -> dict:
    if not path.is_file():
        raise NotFoundError(f"Attachment {path} not found.")
    data = path.read_bytes()
    if len(data) > MAX_ATTACHMENT_BYTES:
        raise ValidationError(f"Attachment {path.name} is larger than 3 MB.")
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return {
        "@odata.type": "#microsoft.graph.fileAttachment",
        "name": path.name,
        "contentType": content_type,
        "contentBytes": base64.b64encode(data).decode("ascii"),
    }


def _recipients(addresses: list[str] | None) -> list[dict]:
    return [{"emailAddress": {"address": validate_email(a)}} for a in addresses or []]


def build_message(
    subject: str,
    body: str,
    to: list[str],
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
    attachments: list[Path] | None = None,
    html: bool = False,
) -> dict:
    """Graph message resource for sendMail."""
    if not to:
        raise ValidationError("At least one recipient is required.")
    message = {
        "subject": subject,
        "body": {"contentType": "HTML" if html else "Text", "content": body},
        "toRecipients": _recipients(to),
    }
    if cc:
        message["ccRecipients"] = _recipients(cc)
    if bcc:
        message["bccRecipients"] = _recipients(bcc)
    if attachments:
        message["attachments"] = [_attachment(Path(p)) for p in attachments]
    return message


def send_email(
    vault: SecretVault,
    store: CertificateStore,
    audit: AuditLog,
    app_name: str,
    to: list[str],
    subject: str,
    body: str,
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
    attachments: list[Path] | None = None,
    html: bool = False,
    sender: str | None = None,
    save_to_sent_items: bool = True,
    token_provider_factory: Callable[..., CertificateTokenProvider] = CertificateTokenProvider,
    client_factory: Callable[[str], GraphClient] = GraphClient,
) -> dict:
    """Send mail app-only, using the connection details stored when the email app was published."""
    with audit.function("Send-EmailAppMessage"):
        message = build_message(subject, body, to, cc, bcc, attachments, html)

        secret_name = secret_name_for(app_name)
        details = read_secret(secret_name, vault)
        sender = sender or details.get("authorizedSender")
        if not sender:
            raise ValidationError(f"Secret '{secret_name}' has no authorized sender; pass a sender explicitly.")
        validate_email(sender)

        location = details.get("certificateStoreLocation") or store.location
        if location != store.location:
            audit.log(f"Using the {location} certificate store recorded for {secret_name}.")
            store = CertificateStore(store.path.parent, location)

        thumbprint = details.get("certificateThumbprint", "")
        if store.get(thumbprint) is None:
            raise NotFoundError(f"Certificate with thumbprint {thumbprint} not found")

        provider = token_provider_factory(
            tenant_id=details["tenantId"],
            client_id=details["appId"],
            thumbprint=thumbprint,
            private_key_pem=store.private_key_pem(thumbprint),
        )
        token = provider.acquire()
        audit.log(f"Acquired app-only token for {details.get('displayName', app_name)}.")

        client_factory(token).send_mail(sender, message, save_to_sent_items=save_to_sent_items)
        audit.log(f"Sent '{subject}' from {sender} to {', '.join(to)}.", "Information")
        return {
            "sender": sender,
            "to": list(to),
            "subject": subject,
            "attachments": [a["name"] for a in message.get("attachments", [])],
        }
