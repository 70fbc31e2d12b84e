"""
Local secret vault.

Each vault is a JSON file under the vault directory mapping secret names to
string values. A vault is "registered" once its file exists. The writer
serialises result objects to compact JSON and refuses to overwrite an
existing secret unless asked to.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .audit_log import AuditLog
from .errors import ConflictError, NotFoundError, ValidationError


class SecretVault:
    def __init__(self, root: Path, name: str) -> None:
        if not name or any(c in name for c in '/\\:'):
            raise ValidationError(f"Invalid vault name {name!r}.")
        self.name = name
        self.path = Path(root) / f"{name}.json"

    def is_registered(self) -> bool:
        return self.path.exists()

    def register(self) -> None:
        if not self.is_registered():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._write({})

    def _read(self) -> dict[str, str]:
        if not self.is_registered():
            raise NotFoundError(f"Vault '{self.name}' is not registered.")
        return json.loads(self.path.read_text(encoding="utf-8"))

    def _write(self, secrets: dict[str, str]) -> None:
        self.path.write_text(json.dumps(secrets, indent=2), encoding="utf-8")

    def list_names(self) -> list[str]:
        return sorted(self._read()) if self.is_registered() else []

    def exists(self, name: str) -> bool:
        return self.is_registered() and name in self._read()

    def get(self, name: str) -> str:
        secrets = self._read()
        if name not in secrets:
            raise NotFoundError(f"Secret '{name}' not found in vault '{self.name}'.")
        return secrets[name]

    def set(self, name: str, value: str) -> None:
        secrets = self._read()
        secrets[name] = value
        self._write(secrets)

    def remove(self, name: str) -> None:
        secrets = self._read()
        if name not in secrets:
            raise NotFoundError(f"Secret '{name}' not found in vault '{self.name}'.")
        del secrets[name]
        self._write(secrets)


def store_secret(
    name: str,
    payload: Any,
    vault: SecretVault,
    audit: AuditLog,
    overwrite: bool = False,
) -> str:
    """Persist payload (a dict, or an object with to_dict()) as compact JSON under name."""
    with audit.function("Set-VaultSecret"):
        if not vault.is_registered():
            audit.log(f"Vault '{vault.name}' not registered; registering it.", "Warning")
            vault.register()

        if vault.exists(name):
            if not overwrite:
                raise ConflictError(
                    f"Secret '{name}' already exists in vault '{vault.name}'. "
                    "Use the overwrite option to replace it."
                )
            audit.log(f"Overwriting existing secret '{name}' in vault '{vault.name}'.", "Warning")
            vault.remove(name)

        data = payload.to_dict() if hasattr(payload, "to_dict") else payload
        vault.set(name, json.dumps(data, separators=(",", ":"), default=str))
        audit.log(f"Stored secret '{name}' in vault '{vault.name}'.", "Information")
        return name


def read_secret(name: str, vault: SecretVault) -> dict:
    return json.loads(vault.get(name))
