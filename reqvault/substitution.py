"""reqvault substitution - {{name}} placeholder rewriting.

Single pass, left to right, non-recursive: a substituted value that itself
contains {{...}} is not expanded again. Unknown names are left verbatim.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import TYPE_CHECKING, Any

from reqvault.errors import SubstitutionError
from reqvault.store import SecretStore
from reqvault.variables import resolve_variables

if TYPE_CHECKING:
    from reqvault.executor import ExecutionRequest

logger = logging.getLogger(__name__)

# {{name}} or {{ name }}; names start with a letter or underscore
VARIABLE_PATTERN = re.compile(r"\{\{[ \t]*([A-Za-z_][A-Za-z0-9_]*)[ \t]*\}\}")


def substitute_string(text: str, variables: dict[str, str]) -> str:
    """Replace every {{name}} found in variables; keep the rest as-is."""
    if not text or not isinstance(text, str):
        return text

    def _replace(m: re.Match) -> str:
        name = m.group(1)
        value = variables.get(name)
        if value is None:
            logger.warning("Variable %r not found in environment", name)
            return m.group(0)
        return value

    return VARIABLE_PATTERN.sub(_replace, text)


def substitute_in_obj(obj: Any, variables: dict[str, str]) -> Any:
    """Substitute in a nested structure.

    dict  -> keys and values, recursing into nested dicts
    list  -> string elements only
    str   -> substitute_string
    other -> unchanged
    """
    if isinstance(obj, str):
        return substitute_string(obj, variables)
    if isinstance(obj, dict):
        return {
            substitute_string(k, variables) if isinstance(k, str) else k: substitute_in_obj(
                v, variables
            )
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [
            substitute_string(item, variables) if isinstance(item, str) else item
            for item in obj
        ]
    return obj


def substitute_request(
    request: ExecutionRequest,
    workspace_id: str | None,
    store: SecretStore | None,
    key: bytes | None = None,
) -> ExecutionRequest:
    """Resolve the workspace's variables and rewrite url, headers and body.

    Returns the request untouched when the workspace has no variables.
    If rewriting fails, logs the error and returns the original request.
    """
    variables = resolve_variables(store, workspace_id, key)
    if not variables:
        return request

    try:
        url = substitute_string(request.url, variables)
        headers = substitute_in_obj(request.headers, variables) if request.headers else request.headers
        body = request.body
        if isinstance(body, str):
            body = substitute_string(body, variables)
        return dataclasses.replace(request, url=url, headers=headers, body=body)
    except Exception as e:
        err = SubstitutionError(f"Variable substitution failed: {e}")
        logger.exception("%s; sending request unsubstituted", err)
        return request


def has_variables(text: str) -> bool:
    """True if text contains at least one well-formed placeholder."""
    if not text or not isinstance(text, str):
        return False
    return VARIABLE_PATTERN.search(text) is not None


def extract_variable_names(text: str) -> list[str]:
    """Unique placeholder names in text, in order of first appearance."""
    if not text or not isinstance(text, str):
        return []
    names: list[str] = []
    for m in VARIABLE_PATTERN.finditer(text):
        if m.group(1) not in names:
            names.append(m.group(1))
    return names
