"""
App display name builder.

GraphToolKit-{prefix}[-{scenario}][-{domainSuffix}][-As-{userLocalPart}]

The scenario segment is always included when a scenario is given. The name
is deterministic; collisions with existing apps are not checked here.
"""

from __future__ import annotations

from .config import FALLBACK_DOMAIN_SUFFIX, domain_suffix_from_env
from .validation import validate_email, validate_prefix

NAME_ROOT = "GraphToolKit"


def build_app_name(
    prefix: str,
    scenario: str | None = None,
    user_email: str | None = None,
    include_domain_suffix: bool = True,
    domain_suffix: str | None = None,
) -> str:
    validate_prefix(prefix)
    if user_email:
        validate_email(user_email)

    parts = [NAME_ROOT, prefix]
    if scenario:
        parts.append(scenario)
    if include_domain_suffix:
        parts.append(domain_suffix or domain_suffix_from_env() or FALLBACK_DOMAIN_SUFFIX)
    if user_email:
        parts.extend(["As", user_email.split("@")[0]])
    return "-".join(parts)


def secret_name_for(app_name: str) -> str:
    """Vault secret name (and certificate subject) for an app."""
    return app_name if app_name.startswith("CN=") else f"CN={app_name}"
