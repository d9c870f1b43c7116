"""reqvault core - config loading, request definitions, auth."""

import base64
import json
import os
import re
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import yaml
from dotenv import dotenv_values

from reqvault.crypto import configure_key, secret_from_env
from reqvault.errors import ConfigurationError
from reqvault.executor import ExecutionRequest
from reqvault.substitution import VARIABLE_PATTERN

GLOBAL_DIR = Path.home() / ".reqvault"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"

CWD_CONFIG_CANDIDATES = [
    ".reqvault.yaml",
    ".reqvault.yml",
    "reqvault.yaml",
    "reqvault.yml",
]

MIN_SECRET_LENGTH = 16

BODY_CONTENT_TYPES = {
    "json": "application/json",
    "xml": "application/xml",
    "text": "text/plain",
    "x-www-form-urlencoded": "application/x-www-form-urlencoded",
}


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (hard, no fallthrough if missing)
      2. .reqvault.yaml (variants) in CWD
      3. ~/.reqvault/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns empty defaults if not found.

    Stores '_config_dir' in the returned dict so relative directories
    resolve against the config file's location.
    """
    if config_path is None:
        return {"defaults": {}, "_config_dir": None}
    path = Path(config_path)
    if not path.exists():
        return {"defaults": {}, "_config_dir": None}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return {
        "defaults": data.get("defaults") or {},
        "_config_dir": path.resolve().parent,
    }


def load_env(env_file: str | None, base_dir: str = ".") -> dict[str, str]:
    """Load .env file and merge with os.environ (.env wins)."""
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir) / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def resolve_value(value: str | None, env: dict[str, str]) -> str | None:
    """Resolve $VAR and ${VAR} references in a config value."""
    if value is None:
        return None
    if not isinstance(value, str):
        return value

    def _replace(m: re.Match) -> str:
        var_name = m.group(1) or m.group(2)
        return env.get(var_name, os.environ.get(var_name, m.group(0)))

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", _replace, value)


def load_encryption_secret(env: dict[str, str]) -> bytes:
    """Apply the secret policy and initialize the process-wide key.

    Raises ConfigurationError when the secret is missing or shorter than
    MIN_SECRET_LENGTH.
    """
    secret = secret_from_env(env)
    if secret is None or not secret.strip():
        raise ConfigurationError(
            "Missing encryption secret. Set REQVAULT_ENCRYPTION_KEY in the environment or .env file."
        )
    if len(secret) < MIN_SECRET_LENGTH:
        raise ConfigurationError(
            f"Encryption secret must be at least {MIN_SECRET_LENGTH} characters long."
        )
    return configure_key(secret)


def _resource_candidates(
    resource_name: str,
    cli_override: str | None,
    config: dict,
) -> list[Path]:
    """Build the ordered candidate list for a named resource directory."""
    if cli_override:
        p = Path(cli_override)
        if not p.is_absolute():
            p = Path.cwd() / p
        return [p]  # hard override, no fallthrough

    candidates: list[Path] = []

    defaults = config.get("defaults", {})
    config_value = defaults.get(f"{resource_name}_dir")
    config_dir = config.get("_config_dir")
    if config_value:
        p = Path(config_value)
        if not p.is_absolute() and config_dir:
            p = Path(config_dir) / p
        candidates.append(p)

    candidates.append(Path(resource_name))
    candidates.append(GLOBAL_DIR / resource_name)

    return candidates


def resolve_resource_dir(
    resource_name: str,
    cli_override: str | None,
    config: dict,
    default: Path | None = None,
) -> Path | None:
    """Find a resource directory by name.

    Resolution order:
      1. cli_override (absolute or relative to CWD; hard, no fallthrough)
      2. {resource_name}_dir from config defaults (relative to config file)
      3. ./{resource_name}/ in CWD
      4. ~/.reqvault/{resource_name}/

    If none found, returns default (caller can create it).
    """
    candidates = _resource_candidates(resource_name, cli_override, config)
    return resolve_path(candidates, default=default)


def resolve_store_dir(cli_store_dir: str | None, config: dict) -> Path:
    """Directory holding encrypted variable files.

    An explicitly configured directory (CLI or config) is used even if it
    does not exist yet; otherwise falls back to ~/.reqvault/store.
    """
    candidates = _resource_candidates("store", cli_store_dir, config)
    if cli_store_dir or config.get("defaults", {}).get("store_dir"):
        return resolve_path(candidates[:1], default=candidates[0])
    return resolve_path(candidates, default=GLOBAL_DIR / "store")


# ── Request definitions ──────────────────────────────────────────────────


def load_request_definition(
    name_or_path: str,
    config: dict,
    requests_dir_override: str | None = None,
) -> dict | None:
    """Load a stored request definition (YAML).

    Resolution order:
      1. Exact file path, or path + .yaml/.yml
      2. Resolved requests directory + name.yaml
    """
    p = Path(name_or_path)
    if p.exists() and p.is_file():
        return _read_definition_file(p)
    for ext in (".yaml", ".yml"):
        candidate = Path(name_or_path + ext)
        if candidate.exists():
            return _read_definition_file(candidate)

    rdir = resolve_resource_dir("requests", requests_dir_override, config)
    if rdir and rdir.is_dir():
        for ext in (".yaml", ".yml"):
            candidate = rdir / (name_or_path + ext)
            if candidate.exists():
                return _read_definition_file(candidate)

    return None


def list_request_definitions(
    config: dict,
    requests_dir_override: str | None = None,
) -> tuple[Path | None, list[dict]]:
    """List all request definitions in the resolved requests directory."""
    rdir = resolve_resource_dir("requests", requests_dir_override, config)
    if not rdir or not rdir.is_dir():
        return (rdir, [])

    definitions: list[dict] = []
    for f in sorted(rdir.iterdir()):
        if f.suffix in (".yaml", ".yml") and f.is_file():
            definition = _read_definition_file(f)
            if definition:
                definitions.append(definition)
    return (rdir, definitions)


def _read_definition_file(path: Path) -> dict | None:
    """Read a single definition file; None if it is not a YAML mapping."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        return None
    data.setdefault("name", path.stem)
    return data


def _enabled_pairs(items: Any) -> list[tuple[str, str]]:
    """Normalize headers/queryParams: a mapping, or a list of {key, value, enabled}."""
    if not items:
        return []
    if isinstance(items, dict):
        return [(str(k), "" if v is None else str(v)) for k, v in items.items()]
    pairs = []
    for item in items:
        if not isinstance(item, dict) or not item.get("key"):
            continue
        if not item.get("enabled", True):
            continue
        pairs.append((str(item["key"]), str(item.get("value", ""))))
    return pairs


def build_auth(auth_config: dict | None) -> tuple[dict[str, str], list[tuple[str, str]]]:
    """Build auth headers and query params from an auth block.

    Supports:
    - bearer:  Authorization: Bearer <token>
    - basic:   Authorization: Basic <b64(user:pass)>
    - api-key: custom header, or query param with addTo: query
    - oauth2:  Authorization: Bearer <accessToken>
    """
    if not auth_config:
        return {}, []

    auth_type = (auth_config.get("type") or "none").lower()

    if auth_type == "bearer":
        token = (auth_config.get("bearer") or {}).get("token") or auth_config.get("token")
        if token:
            return {"Authorization": f"Bearer {token}"}, []

    elif auth_type == "basic":
        basic = auth_config.get("basic") or auth_config
        username = basic.get("username") or ""
        password = basic.get("password") or ""
        if username or password:
            credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
            return {"Authorization": f"Basic {credentials}"}, []

    elif auth_type == "api-key":
        api_key = auth_config.get("apiKey") or auth_config
        name = api_key.get("key") or "X-API-Key"
        value = api_key.get("value") or ""
        if api_key.get("addTo", "header") == "query":
            return {}, [(name, value)]
        return {name: value}, []

    elif auth_type == "oauth2":
        token = (auth_config.get("oauth2") or {}).get("accessToken")
        if token:
            return {"Authorization": f"Bearer {token}"}, []

    return {}, []


def append_query(url: str, params: list[tuple[str, str]]) -> str:
    """Append URL-encoded params to url.

    Placeholders are tightened to {{name}} and their braces stay literal,
    so they still match at substitution time.
    """
    if not params:
        return url
    params = [(_tighten(k), _tighten(v)) for k, v in params]
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{urlencode(params, safe='{}')}"


def _tighten(text: str) -> str:
    return VARIABLE_PATTERN.sub(lambda m: "{{" + m.group(1) + "}}", text)


def build_execution_request(
    definition: dict,
    defaults: dict,
    env: dict[str, str],
    workspace_id: str | None = None,
) -> ExecutionRequest:
    """Turn a stored request definition into a draft ExecutionRequest.

    Disabled headers and params are skipped, auth is applied, and a
    Content-Type matching bodyType is added when none is set. {{name}}
    placeholders are left for the substitution step.
    """
    method = (definition.get("method") or "GET").upper()
    url = definition.get("url") or ""

    base_url = resolve_value(defaults.get("base_url"), env) or ""
    if base_url and not url.startswith(("http://", "https://", "{{")):
        url = base_url.rstrip("/") + "/" + url.lstrip("/")

    headers: dict[str, str] = {
        k: resolve_value(v, env) or "" for k, v in _enabled_pairs(defaults.get("headers"))
    }
    headers.update(dict(_enabled_pairs(definition.get("headers"))))

    params = _enabled_pairs(definition.get("queryParams") or definition.get("params"))

    auth_headers, auth_params = build_auth(definition.get("auth"))
    headers.update(auth_headers)
    params.extend(auth_params)

    body = definition.get("body")
    if body is not None and not isinstance(body, str):
        body = json.dumps(body)

    content_type = BODY_CONTENT_TYPES.get(definition.get("bodyType") or "")
    if body and content_type and not any(k.lower() == "content-type" for k in headers):
        headers["Content-Type"] = content_type

    return ExecutionRequest(
        method=method,
        url=append_query(url, params),
        headers=headers,
        body=body,
        workspace_id=workspace_id or definition.get("workspace") or defaults.get("workspace"),
    )