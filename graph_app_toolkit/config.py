"""
Configuration for GraphAppToolkit.

Values come from (lowest to highest precedence) built-in defaults,
graph_app_toolkit_config.json, environment variables, and CLI flags.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path

from .errors import ConfigError, ValidationError
from .validation import validate_guid

# Public clients used for delegated administrator sign-in.
GRAPH_CLI_CLIENT_ID = "14d82eec-204b-4c2f-b7e8-296a70dab67e"  # Microsoft Graph Command Line Tools
EXCHANGE_CLIENT_ID = "fb78d390-0c51-40cd-8e17-fdbfab77341b"  # Exchange Online PowerShell

CONFIG_FILE_NAME = "graph_app_toolkit_config.json"
DEFAULT_HOME = Path.home() / ".graph_app_toolkit"
DEFAULT_VAULT_NAME = "GraphEmailAppLocalStore"

FALLBACK_DOMAIN_SUFFIX = "MyDomain"
DOMAIN_ENV_VAR = "USERDNSDOMAIN"


@dataclass
class ToolkitConfig:
    tenant_id: str = "organizations"
    client_id: str = GRAPH_CLI_CLIENT_ID
    exchange_client_id: str = EXCHANGE_CLIENT_ID
    home_dir: str = ""
    cert_store_location: str = "CurrentUser"
    default_vault_name: str = DEFAULT_VAULT_NAME
    domain_suffix: str = ""

    def __post_init__(self):
        if not self.home_dir:
            self.home_dir = str(DEFAULT_HOME)

    @property
    def home(self) -> Path:
        return Path(self.home_dir).expanduser()

    @property
    def vault_dir(self) -> Path:
        return self.home / "vaults"

    @property
    def cert_store_dir(self) -> Path:
        return self.home / "certificates"


def domain_suffix_from_env() -> str | None:
    """First DNS label of USERDNSDOMAIN, e.g. CORP.CONTOSO.COM -> CORP."""
    value = os.environ.get(DOMAIN_ENV_VAR, "").strip()
    if not value:
        return None
    return value.split(".")[0]


def load_config(config_path: Path | None = None, **overrides) -> ToolkitConfig:
    """
    Build the effective configuration.

    A missing config file is not an error (defaults apply); an unreadable one is.
    Keyword overrides with a None value are ignored so CLI flags can be passed through.
    """
    path = config_path or Path.cwd() / CONFIG_FILE_NAME
    data: dict = {}
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8-sig"))
        except (json.JSONDecodeError, OSError) as exc:
            raise ConfigError(f"Error reading config file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object.")
    elif config_path is not None:
        raise ConfigError(f"Config file not found: {path}")

    known = {f.name for f in fields(ToolkitConfig)}
    config = ToolkitConfig(**{k: v for k, v in data.items() if k in known})

    env_map = {
        "GRAPH_APP_TOOLKIT_HOME": "home_dir",
        "GRAPH_APP_TOOLKIT_TENANT": "tenant_id",
        "GRAPH_APP_TOOLKIT_CLIENT_ID": "client_id",
    }
    for env_var, attr in env_map.items():
        if value := os.environ.get(env_var):
            setattr(config, attr, value)
    if not config.domain_suffix:
        config.domain_suffix = domain_suffix_from_env() or ""

    for key, value in overrides.items():
        if value is not None and key in known:
            setattr(config, key, value)

    for attr in ("client_id", "exchange_client_id"):
        try:
            validate_guid(getattr(config, attr))
        except ValidationError as exc:
            raise ConfigError(f"{attr}: {exc}") from exc
    return config
