"""
Exchange Online admin client.

Runs Exchange Online cmdlets through the admin REST InvokeCommand endpoint,
the same surface the Exchange Online management module uses.
"""

from __future__ import annotations

from typing import Any

import requests

from .errors import ExchangeAPIError, NotFoundError

EXCHANGE_ADMIN_BASE = "https://outlook.office365.com/adminapi/beta"


class ExchangeClient:
    """Cmdlet invoker bound to one tenant and one access token."""

    def __init__(self, access_token: str, tenant_id: str, session: requests.Session | None = None) -> None:
        self.tenant_id = tenant_id
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            }
        )

    @property
    def _url(self) -> str:
        return f"{EXCHANGE_ADMIN_BASE}/{self.tenant_id}/InvokeCommand"

    def invoke(self, cmdlet: str, parameters: dict[str, Any] | None = None) -> list[dict]:
        """Run one cmdlet and return its output objects."""
        body = {"CmdletInput": {"CmdletName": cmdlet, "Parameters": parameters or {}}}
        resp = self._session.post(self._url, json=body, timeout=60)

        if resp.status_code in (401, 403):
            raise PermissionError(f"Exchange Online access denied ({resp.status_code}) running {cmdlet}")

        if resp.status_code not in (200, 201):
            try:
                err = resp.json().get("error", {}).get("message", resp.text)
            except ValueError:
                err = resp.text
            raise ExchangeAPIError(resp.status_code, err, cmdlet)

        if not resp.content:
            return []
        data = resp.json()
        return data.get("value", []) if isinstance(data, dict) else list(data)

    # ── Convenience cmdlets ──────────────────────────────────────────────────

    def get_organization_config(self) -> dict:
        result = self.invoke("Get-OrganizationConfig")
        return result[0] if result else {}

    def get_recipient(self, identity: str) -> dict:
        try:
            result = self.invoke("Get-Recipient", {"Identity": identity})
        except ExchangeAPIError as exc:
            if exc.status_code == 404 or "couldn't be found" in str(exc):
                raise NotFoundError(f"Recipient {identity} not found.") from exc
            raise
        if not result:
            raise NotFoundError(f"Recipient {identity} not found.")
        return result[0]

    def new_distribution_group(self, name: str, alias: str, primary_smtp_address: str) -> dict:
        """Create a mail-enabled security group."""
        result = self.invoke(
            "New-DistributionGroup",
            {
                "Name": name,
                "Alias": alias,
                "PrimarySmtpAddress": primary_smtp_address,
                "Type": "Security",
            },
        )
        return result[0] if result else {}

    def hide_from_address_lists(self, identity: str) -> None:
        self.invoke(
            "Set-DistributionGroup",
            {"Identity": identity, "HiddenFromAddressListsEnabled": True},
        )

    def add_distribution_group_member(self, identity: str, member: str) -> None:
        self.invoke(
            "Add-DistributionGroupMember",
            {"Identity": identity, "Member": member, "BypassSecurityGroupManagerCheck": True},
        )

    def get_distribution_group_members(self, identity: str) -> list[dict]:
        return self.invoke("Get-DistributionGroupMember", {"Identity": identity})

    def new_application_access_policy(self, app_id: str, group: str, description: str) -> dict:
        """Restrict an app's mailbox access to members of one mail-enabled group."""
        result = self.invoke(
            "New-ApplicationAccessPolicy",
            {
                "AppId": app_id,
                "PolicyScopeGroupId": group,
                "AccessRight": "RestrictAccess",
                "Description": description,
            },
        )
        return result[0] if result else {}

    def test_application_access_policy(self, app_id: str, identity: str) -> str:
        """Return the AccessCheckResult (Granted / Denied) for a mailbox."""
        result = self.invoke("Test-ApplicationAccessPolicy", {"Identity": identity, "AppId": app_id})
        return result[0].get("AccessCheckResult", "") if result else ""
