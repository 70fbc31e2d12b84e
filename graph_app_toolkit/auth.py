"""
MSAL authentication and session reuse for GraphAppToolkit.

Administrators sign in with the device code flow. Tokens are held only in the
in-memory MSAL cache of the running process and never written to disk.
Sessions are reused when a probe call succeeds and the granted scopes already
cover what the caller asks for; otherwise they are torn down and rebuilt.
"""

from __future__ import annotations

from typing import Callable

import msal
import requests
from rich.console import Console
from rich.panel import Panel

from .audit_log import AuditLog
from .errors import AuthenticationError
from .exchange import ExchangeClient
from .graph import GraphClient

console = Console(stderr=True)

GRAPH_RESOURCE = "https://graph.microsoft.com/"
EXCHANGE_SCOPES = ["https://outlook.office365.com/.default"]
APP_ONLY_GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]

# Directory scopes the publish workflows need in the signed-in administrator's token.
PUBLISH_SCOPES = [
    "Application.ReadWrite.All",
    "DelegatedPermissionGrant.ReadWrite.All",
    "Directory.ReadWrite.All",
    "RoleManagement.ReadWrite.Directory",
]


def _short_scope(scope: str) -> str:
    """https://graph.microsoft.com/Mail.Send -> mail.send"""
    if scope.lower().startswith(GRAPH_RESOURCE):
        scope = scope[len(GRAPH_RESOURCE):]
    return scope.lower()


def missing_scopes(requested: list[str], granted: set[str]) -> list[str]:
    """Requested scopes (original spelling) that the granted set does not contain."""
    have = {_short_scope(s) for s in granted}
    return [s for s in requested if _short_scope(s) not in have]


def _print_device_flow(flow: dict) -> None:
    console.print(
        Panel(
            f"[bold yellow]Open your browser and go to:[/bold yellow]\n\n"
            f"  [cyan underline]{flow.get('verification_uri', 'https://microsoft.com/devicelogin')}[/cyan underline]\n\n"
            f"[bold yellow]Enter the code:[/bold yellow]\n\n"
            f"  [bold white on blue]  {flow['user_code']}  [/bold white on blue]\n\n"
            f"[dim]Waiting for authentication... (expires in {flow.get('expires_in', 900) // 60} minutes)[/dim]",
            title="[bold cyan]Microsoft Authentication Required[/bold cyan]",
            border_style="cyan",
        )
    )


class DeviceCodeTokenProvider:
    """
    Delegated token acquisition: silent from the in-memory cache first,
    device code flow otherwise.
    """

    def __init__(
        self,
        client_id: str,
        tenant_id: str = "organizations",
        app: msal.PublicClientApplication | None = None,
        on_flow: Callable[[dict], None] = _print_device_flow,
    ) -> None:
        self._app = app or msal.PublicClientApplication(
            client_id=client_id,
            authority=f"https://login.microsoftonline.com/{tenant_id}",
        )
        self._on_flow = on_flow

    def acquire(self, scopes: list[str]) -> dict:
        """Return the raw MSAL result; it always contains access_token on success."""
        for account in self._app.get_accounts():
            result = self._app.acquire_token_silent(scopes, account=account)
            if result and "access_token" in result:
                return result

        flow = self._app.initiate_device_flow(scopes=scopes)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Failed to create device flow: {flow.get('error_description', 'unknown error')}"
            )
        self._on_flow(flow)
        result = self._app.acquire_token_by_device_flow(flow)
        if "access_token" not in result:
            error = result.get("error_description") or result.get("error") or "Unknown error"
            raise AuthenticationError(f"Authentication failed: {error}")
        return result

    def sign_out(self) -> None:
        for account in self._app.get_accounts():
            self._app.remove_account(account)


def _tenant_from_result(result: dict) -> str:
    return (result.get("id_token_claims") or {}).get("tid", "")


class GraphSession:
    """Reusable delegated Graph connection for one command invocation."""

    def __init__(
        self,
        token_provider: DeviceCodeTokenProvider,
        audit: AuditLog,
        client_factory: Callable[[str], GraphClient] = GraphClient,
    ) -> None:
        self._tokens = token_provider
        self._audit = audit
        self._client_factory = client_factory
        self._client: GraphClient | None = None
        self.granted_scopes: set[str] = set()
        self.tenant_id = ""

    @property
    def client(self) -> GraphClient | None:
        return self._client

    def _probe(self) -> bool:
        try:
            org = self._client.get_organization()
        except (PermissionError, RuntimeError, requests.RequestException) as exc:
            self._audit.log(f"Existing Graph session probe failed: {exc}")
            return False
        if not self.tenant_id:
            self.tenant_id = org.get("id", "")
        return True

    def connect(self, scopes: list[str]) -> GraphClient:
        """Return a client whose token carries every requested scope."""
        with self._audit.function("Connect-Graph"):
            if self._client is not None and self._probe():
                missing = missing_scopes(scopes, self.granted_scopes)
                if not missing:
                    self._audit.log("Reusing existing Graph session; all requested scopes are granted.")
                    return self._client
                self._audit.log(
                    f"Graph session is missing scopes: {', '.join(missing)}. Reconnecting.", "Warning"
                )
                self.disconnect()

            full_scopes = [s if s.startswith("https://") else f"{GRAPH_RESOURCE}{s}" for s in scopes]
            try:
                result = self._tokens.acquire(full_scopes)
            except Exception as exc:
                self._audit.log(f"Failed to connect to Microsoft Graph: {exc}", "Error")
                raise
            self._client = self._client_factory(result["access_token"])
            self.granted_scopes = set((result.get("scope") or "").split())
            self.tenant_id = _tenant_from_result(result)
            if not self.tenant_id:
                self.tenant_id = self._client.get_organization().get("id", "")
            self._audit.log(f"Connected to Microsoft Graph (tenant {self.tenant_id}).", "Information")
            return self._client

    def disconnect(self) -> None:
        self._tokens.sign_out()
        self._client = None
        self.granted_scopes = set()


class ExchangeSession:
    """Reusable Exchange Online connection; any successful probe is reusable."""

    def __init__(
        self,
        token_provider: DeviceCodeTokenProvider,
        audit: AuditLog,
        tenant_id: str = "",
        client_factory: Callable[[str, str], ExchangeClient] = ExchangeClient,
    ) -> None:
        self._tokens = token_provider
        self._audit = audit
        self._client_factory = client_factory
        self._client: ExchangeClient | None = None
        self.tenant_id = tenant_id

    def connect(self) -> ExchangeClient:
        with self._audit.function("Connect-ExchangeOnline"):
            if self._client is not None:
                try:
                    self._client.get_organization_config()
                    self._audit.log("Reusing existing Exchange Online session.")
                    return self._client
                except (PermissionError, RuntimeError, requests.RequestException) as exc:
                    self._audit.log(f"Existing Exchange Online session probe failed: {exc}")
                    self._client = None

            try:
                result = self._tokens.acquire(EXCHANGE_SCOPES)
            except Exception as exc:
                self._audit.log(f"Failed to connect to Exchange Online: {exc}", "Error")
                raise
            tenant_id = _tenant_from_result(result) or self.tenant_id
            if not tenant_id:
                raise AuthenticationError("Could not determine the tenant id for Exchange Online.")
            self.tenant_id = tenant_id
            self._client = self._client_factory(result["access_token"], tenant_id)
            self._audit.log(f"Connected to Exchange Online (tenant {tenant_id}).", "Information")
            return self._client


class CertificateTokenProvider:
    """App-only Graph token for a published app, signed with its certificate."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        thumbprint: str,
        private_key_pem: str,
        app: msal.ConfidentialClientApplication | None = None,
    ) -> None:
        self._app = app or msal.ConfidentialClientApplication(
            client_id=client_id,
            authority=f"https://login.microsoftonline.com/{tenant_id}",
            client_credential={"thumbprint": thumbprint, "private_key": private_key_pem},
        )

    def acquire(self, scopes: list[str] | None = None) -> str:
        result = self._app.acquire_token_for_client(scopes=scopes or APP_ONLY_GRAPH_SCOPES)
        if "access_token" not in result:
            error = result.get("error_description", result.get("error", "Unknown"))
            raise AuthenticationError(f"Certificate auth failed: {error}")
        return result["access_token"]
