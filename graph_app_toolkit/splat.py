"""Render a result as a PowerShell parameter splat for copy/paste reuse."""

from __future__ import annotations

from typing import Any


def _literal(value: Any) -> str:
    if value is None:
        return "$null"
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return "@(" + ", ".join(_literal(v) for v in value) + ")"
    # Backtick first; it is the escape character for the other two.
    text = str(value).replace("`", "``").replace("$", "`$").replace('"', '""')
    return f'"{text}"'


def format_param_splat(obj: Any, variable: str = "params") -> str:
    """
    $params = @{
        Name = "John"
        Age = 30
    }
    """
    data = obj.to_dict() if hasattr(obj, "to_dict") else dict(obj)
    lines = [f"${variable} = @{{"]
    lines.extend(f"    {key} = {_literal(value)}" for key, value in data.items())
    lines.append("}")
    return "\n".join(lines)
