"""reqvault output - render execution results and variable lists."""

from __future__ import annotations

import json
from typing import Any

SECRET_MASK = "********"


def format_size(size: int) -> str:
    """Human-readable byte count: 0 B, 512 B, 1.50 KB, ..."""
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(size)
    idx = 0
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024
        idx += 1
    if idx == 0:
        return f"{size} B"
    return f"{value:.2f} {units[idx]}"


def format_output(
    result,  # ExecutionResult from executor.py
    verbose: bool = False,
    raw: bool = False,
    as_json: bool = False,
) -> str:
    """Format an execution result for CLI output.

    Default layout:
        STATUS: 200 OK
        TIME: 45ms
        SIZE: 17 B (json)
        BODY:
        {...}
    """
    if as_json:
        return json.dumps(result.to_dict(), indent=2)

    if result.error:
        return f"ERROR: {result.error}"

    if raw:
        return _render_body(result)

    lines: list[str] = []
    status = f"STATUS: {result.status_code}"
    if result.status_text:
        status += f" {result.status_text}"
    lines.append(status)
    lines.append(f"TIME: {result.elapsed_ms}ms")
    lines.append(f"SIZE: {format_size(result.size_bytes)} ({result.body_type})")

    if verbose and result.headers:
        lines.append("HEADERS:")
        for key, value in result.headers.items():
            lines.append(f"  {key}: {value}")

    body = _render_body(result)
    if body:
        lines.append(f"BODY ({result.encoding}):" if result.encoding != "utf8" else "BODY:")
        lines.append(body)

    return "\n".join(lines)


def _render_body(result) -> str:
    body = result.body
    if result.body_type == "json":
        return json.dumps(body, indent=2)
    return "" if body is None else str(body)


def format_variables(variables: list[dict[str, Any]], show_secrets: bool = False) -> str:
    """Render a decrypted variable list, one KEY=VALUE per line."""
    if not variables:
        return "No variables."
    lines = []
    for var in variables:
        if var.get("error"):
            lines.append(f"  {var['key']} = <{var['error']}>")
            continue
        value = var["value"]
        if var.get("isSecret") and not show_secrets:
            value = SECRET_MASK
        suffix = "  (secret)" if var.get("isSecret") else ""
        lines.append(f"  {var['key']} = {value}{suffix}")
    return "\n".join(lines)
