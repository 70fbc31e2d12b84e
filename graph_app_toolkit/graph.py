"""
Microsoft Graph API client with automatic pagination and retry logic.

Covers the calls the publish and send-mail workflows need: service principal
and application lookups, application / service principal creation, OAuth2
permission grants, directory role membership and sendMail.
Respects Retry-After headers on 429 responses and retries up to MAX_RETRIES times.
Network errors and 5xx responses are only retried for GET; writes are not
idempotent and are raised after a single attempt.
"""

from __future__ import annotations

import time
from typing import Any, Generator

import requests
from rich.console import Console

from .errors import GraphAPIError, NotFoundError

console = Console(stderr=True)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
MAX_RETRIES = 5
RETRY_BACKOFF_BASE = 2  # seconds; doubles each retry


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


def _error_message(resp: requests.Response) -> str:
    try:
        return resp.json().get("error", {}).get("message", resp.text)
    except ValueError:
        return resp.text


class GraphClient:
    """Thin wrapper around the Microsoft Graph REST API."""

    def __init__(self, access_token: str, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "ConsistencyLevel": "eventual",  # required for $count / $search on some endpoints
            }
        )

    def _request(self, method: str, url: str, params: dict | None = None, json: Any = None) -> dict:
        """Single request with retry on 429 / transient errors."""
        idempotent = method == "GET"
        for attempt in range(MAX_RETRIES):
            try:
                resp = self._session.request(method, url, params=params, json=json, timeout=30)
            except requests.RequestException as exc:
                if idempotent and attempt < MAX_RETRIES - 1:
                    wait = RETRY_BACKOFF_BASE ** attempt
                    console.print(f"[yellow]Network error ({exc}). Retrying in {wait}s...[/yellow]")
                    time.sleep(wait)
                    continue
                raise

            if resp.status_code in (200, 201):
                return resp.json() if resp.content else {}

            if resp.status_code in (202, 204):
                return {}

            if resp.status_code == 429:
                try:
                    retry_after = int(resp.headers.get("Retry-After", RETRY_BACKOFF_BASE ** attempt))
                except ValueError:
                    retry_after = RETRY_BACKOFF_BASE ** attempt
                console.print(f"[yellow]Rate limited. Waiting {retry_after}s...[/yellow]")
                time.sleep(retry_after)
                continue

            if resp.status_code in (401, 403):
                raise PermissionError(
                    f"Graph API access denied ({resp.status_code}): {_error_message(resp)}"
                )

            if resp.status_code in (500, 502, 503, 504) and idempotent and attempt < MAX_RETRIES - 1:
                wait = RETRY_BACKOFF_BASE ** attempt
                console.print(f"[yellow]Server error {resp.status_code}. Retrying in {wait}s...[/yellow]")
                time.sleep(wait)
                continue

            raise GraphAPIError(resp.status_code, _error_message(resp), url)

        raise GraphAPIError(429, f"request failed after {MAX_RETRIES} retries", url)

    def get(self, path: str, params: dict | None = None) -> dict:
        return self._request("GET", f"{GRAPH_BASE}{path}", params=params)

    def post(self, path: str, body: dict) -> dict:
        return self._request("POST", f"{GRAPH_BASE}{path}", json=body)

    def delete(self, path: str) -> dict:
        return self._request("DELETE", f"{GRAPH_BASE}{path}")

    def get_paged(self, path: str, params: dict | None = None) -> Generator[dict, None, None]:
        """
        Yield individual items from a paged Graph API collection.

        Automatically follows @odata.nextLink until all pages are consumed.
        """
        url = f"{GRAPH_BASE}{path}"
        query: dict | None = dict(params or {})

        while url:
            data = self._request("GET", url, params=query)
            # On nextLink pages, params are already encoded in the URL
            query = None
            for item in data.get("value", []):
                yield item
            url = data.get("@odata.nextLink")

    # ── Tenant ───────────────────────────────────────────────────────────────

    def get_organization(self) -> dict:
        """Return the first organization object (tenant details)."""
        data = self.get("/organization", params={"$select": "id,displayName,verifiedDomains"})
        orgs = data.get("value", [data])
        return orgs[0] if orgs else {}

    def get_user(self, user_id: str) -> dict:
        """Fetch a user by object id or UPN; a missing user is a NotFoundError."""
        try:
            return self.get(f"/users/{user_id}", params={"$select": "id,displayName,userPrincipalName,mail"})
        except GraphAPIError as exc:
            if exc.status_code == 404:
                raise NotFoundError(f"User {user_id} not found.") from exc
            raise

    # ── Service principals / applications ────────────────────────────────────

    def get_service_principal_by_name(self, display_name: str) -> dict:
        items = list(
            self.get_paged(
                "/servicePrincipals",
                params={
                    "$filter": f"displayName eq '{_odata_quote(display_name)}'",
                    "$select": "id,appId,displayName,appRoles,oauth2PermissionScopes",
                },
            )
        )
        if not items:
            raise NotFoundError(f"Service principal '{display_name}' not found.")
        return items[0]

    def get_service_principal_by_app_id(self, app_id: str) -> dict:
        items = list(
            self.get_paged(
                "/servicePrincipals",
                params={
                    "$filter": f"appId eq '{_odata_quote(app_id)}'",
                    "$select": "id,appId,displayName",
                },
            )
        )
        if not items:
            raise NotFoundError(f"Service principal for appId {app_id} not found.")
        return items[0]

    def create_application(self, body: dict) -> dict:
        return self.post("/applications", body)

    def create_service_principal(self, app_id: str) -> dict:
        return self.post("/servicePrincipals", {"appId": app_id})

    def create_oauth2_permission_grant(
        self, client_id: str, resource_id: str, scope: str, consent_type: str = "AllPrincipals"
    ) -> dict:
        return self.post(
            "/oauth2PermissionGrants",
            {
                "clientId": client_id,
                "consentType": consent_type,
                "resourceId": resource_id,
                "scope": scope,
            },
        )

    # ── Directory roles ──────────────────────────────────────────────────────

    def get_directory_role(self, display_name: str) -> dict | None:
        """Return the activated directory role with this name, or None."""
        for role in self.get_paged("/directoryRoles"):
            if role.get("displayName") == display_name:
                return role
        return None

    def activate_directory_role(self, display_name: str) -> dict:
        """Activate a directory role from its template (roles are inactive until first used)."""
        for template in self.get_paged("/directoryRoleTemplates"):
            if template.get("displayName") == display_name:
                return self.post("/directoryRoles", {"roleTemplateId": template["id"]})
        raise NotFoundError(f"Directory role template '{display_name}' not found.")

    def add_directory_role_member(self, role_id: str, principal_id: str) -> None:
        self.post(
            f"/directoryRoles/{role_id}/members/$ref",
            {"@odata.id": f"{GRAPH_BASE}/directoryObjects/{principal_id}"},
        )

    # ── Mail ─────────────────────────────────────────────────────────────────

    def send_mail(self, sender: str, message: dict, save_to_sent_items: bool = True) -> None:
        self.post(
            f"/users/{sender}/sendMail",
            {"message": message, "saveToSentItems": save_to_sent_items},
        )
