"""reqvault CLI - execute HTTP requests with encrypted workspace variables."""

import json
import logging
import sys
from pathlib import Path

import click
import yaml

TOOL_HELP = """\
reqvault: HTTP request runner with encrypted workspace variables.

Executes HTTP requests after substituting {{name}} placeholders from a
workspace's encrypted variable store, and prints a normalized response.

\b
MODES
─────
  Direct:      reqvault METHOD URL [options]
  Stored:      reqvault -r REQUEST [options]
  Variables:   reqvault -w WORKSPACE --list-vars | --set-var K=V | --import-vars FILE

\b
DIRECT MODE
───────────
  reqvault GET https://api.example.com/users
  reqvault POST '{{base_url}}/users' -w staging -b '{"name":"test"}'
  reqvault GET '{{base_url}}/me' -w staging -H 'Authorization: Bearer {{token}}'

  A body is only sent for POST, PUT and PATCH.

\b
STORED REQUESTS
───────────────
  Request definitions are YAML files in ./requests/ (or requests_dir):

  \b
  # requests/get-user.yaml
  method: GET
  url: "{{base_url}}/users/{{user_id}}"
  workspace: staging
  headers:
    - {key: Accept, value: application/json, enabled: true}
  queryParams:
    - {key: expand, value: profile, enabled: true}
  auth:
    type: bearer                  # none | bearer | basic | api-key | oauth2
    bearer: {token: "{{token}}"}

  reqvault -r get-user
  reqvault --list-requests

\b
VARIABLES
─────────
  Values are encrypted with AES-256-GCM before they are stored. The key
  is derived from REQVAULT_ENCRYPTION_KEY (environment or .env file).

  \b
  reqvault -w staging --set-var base_url=https://staging.example.com
  reqvault -w staging --set-var token=abc123 --secret
  reqvault -w staging --unset-var token
  reqvault -w staging --import-vars vars.yaml   # replaces the whole set
  reqvault -w staging --list-vars [--show-secrets]

  Placeholders: {{name}} or {{ name }}; names start with a letter or
  underscore. Unknown names are left as-is.

\b
OUTPUT
──────
  STATUS: 200 OK
  TIME: 45ms
  SIZE: 17 B (json)
  BODY:
  {"id": 1}

  --verbose adds response headers, --raw prints the body only,
  --json prints the full structured response.

\b
CONFIG FILE (.reqvault.yaml)
────────────────────────────
  \b
  defaults:
    env_file: .env
    timeout: 30                 # seconds
    workspace: staging
    store_dir: store
    requests_dir: requests
    base_url: ${API_BASE_URL}
    headers:
      Accept: application/json
"""


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("method", required=False)
@click.argument("url", required=False)
@click.option(
    "-r",
    "--request",
    "request_name",
    default=None,
    help="Stored request name or path. Use --list-requests to see available.",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .reqvault.yaml in CWD, then ~/.reqvault/config.yaml.",
)
@click.option(
    "--requests-dir",
    "requests_dir_override",
    default=None,
    help="Override the stored requests directory.",
)
@click.option(
    "--store-dir",
    "store_dir_override",
    default=None,
    help="Override the encrypted variable store directory.",
)
@click.option(
    "-w",
    "--workspace",
    "workspace_id",
    default=None,
    help="Workspace whose variables are substituted / managed.",
)
@click.option("-b", "--body", default=None, help="Request body string.")
@click.option(
    "-H",
    "--header",
    multiple=True,
    help="HTTP header as 'Name: Value'. Repeatable.",
)
@click.option(
    "--timeout",
    type=int,
    default=None,
    help="Request timeout in seconds. Default: 30.",
)
@click.option("--verbose", is_flag=True, default=False, help="Include response headers.")
@click.option("--raw", is_flag=True, default=False, help="Output the body only.")
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    default=False,
    help="Output the full structured response as JSON.",
)
@click.option(
    "--list-requests",
    "show_list_requests",
    is_flag=True,
    default=False,
    help="List stored request definitions.",
)
@click.option(
    "--list-vars",
    "show_list_vars",
    is_flag=True,
    default=False,
    help="List the workspace's variables.",
)
@click.option(
    "--show-secrets",
    is_flag=True,
    default=False,
    help="Show secret values in --list-vars output.",
)
@click.option(
    "--set-var",
    "set_vars",
    multiple=True,
    metavar="KEY=VALUE",
    help="Create or update a workspace variable. Repeatable.",
)
@click.option(
    "--secret",
    "mark_secret",
    is_flag=True,
    default=False,
    help="Mark variables given with --set-var as secret.",
)
@click.option(
    "--unset-var",
    "unset_vars",
    multiple=True,
    metavar="KEY",
    help="Remove a workspace variable. Repeatable.",
)
@click.option(
    "--import-vars",
    "import_vars_file",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="Replace the workspace's variables with a YAML/JSON list of {key, value, isSecret}.",
)
@click.option("--health", is_flag=True, default=False, help="Show configuration status.")
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging on stderr.")
def main(
    method,
    url,
    request_name,
    config_file,
    requests_dir_override,
    store_dir_override,
    workspace_id,
    body,
    header,
    timeout,
    verbose,
    raw,
    as_json,
    show_list_requests,
    show_list_vars,
    show_secrets,
    set_vars,
    mark_secret,
    unset_vars,
    import_vars_file,
    health,
    debug,
):
    """Execute HTTP requests with encrypted workspace variables."""
    from reqvault.core import (
        build_execution_request,
        list_request_definitions,
        load_config,
        load_env,
        load_request_definition,
        resolve_config_path,
        resolve_store_dir,
        resolve_value,
    )
    from reqvault.errors import ConfigurationError
    from reqvault.executor import ExecutionRequest, execute
    from reqvault.output import format_output
    from reqvault.store import FileSecretStore

    _configure_logging(debug)

    # --- Load config ---
    config_path = resolve_config_path(config_file)
    config = load_config(config_path)
    defaults = config.get("defaults", {})

    env = load_env(defaults.get("env_file"))
    store = FileSecretStore(resolve_store_dir(store_dir_override, config))
    cli_workspace = workspace_id
    workspace_id = workspace_id or defaults.get("workspace")

    # --- Dispatch ---

    if health:
        _cmd_health(config_path, store, env)
        return

    if show_list_requests:
        _cmd_list_requests(list_request_definitions, config, requests_dir_override)
        return

    try:
        if show_list_vars or set_vars or unset_vars or import_vars_file:
            if not workspace_id:
                click.echo("ERROR: --workspace is required for variable management.", err=True)
                sys.exit(1)
            _cmd_variables(
                store,
                workspace_id,
                env,
                set_vars=set_vars,
                unset_vars=unset_vars,
                import_file=import_vars_file,
                mark_secret=mark_secret,
                show_secrets=show_secrets,
            )
            return

        if request_name:
            definition = load_request_definition(request_name, config, requests_dir_override)
            if definition is None:
                click.echo(
                    f"Request '{request_name}' not found. "
                    f"Stored requests are .yaml files in ./requests/ or requests_dir.",
                    err=True,
                )
                sys.exit(1)
            request = build_execution_request(definition, defaults, env, cli_workspace)
            request.headers.update(_parse_headers(header))
            if body:
                request.body = body
        elif method and url:
            request = ExecutionRequest(
                method=method.upper(),
                url=url,
                headers={
                    **{k: resolve_value(str(v), env) for k, v in (defaults.get("headers") or {}).items()},
                    **_parse_headers(header),
                },
                body=body,
                workspace_id=workspace_id,
            )
        else:
            ctx = click.get_current_context()
            click.echo(ctx.get_help())
            ctx.exit(1)
            return

        _cmd_execute(
            request,
            store,
            env,
            _resolve_timeout(timeout, defaults.get("timeout")),
            execute,
            format_output,
            verbose=verbose,
            raw=raw,
            as_json=as_json,
        )
    except (ConfigurationError, ValueError) as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)


# ── Subcommand implementations ──────────────────────────────────────────


def _cmd_execute(request, store, env, timeout, execute, format_output, verbose, raw, as_json):
    from reqvault.core import load_encryption_secret

    key = None
    if request.workspace_id:
        key = load_encryption_secret(env)

    result = execute(request, store=store, timeout=timeout, key=key)
    if result.error:
        if as_json:
            click.echo(format_output(result, as_json=True))
        else:
            click.echo(f"ERROR: {result.error}", err=True)
        sys.exit(1)

    click.echo(format_output(result, verbose=verbose, raw=raw, as_json=as_json))


def _cmd_variables(
    store,
    workspace_id,
    env,
    set_vars=(),
    unset_vars=(),
    import_file=None,
    mark_secret=False,
    show_secrets=False,
):
    from reqvault.core import load_encryption_secret
    from reqvault.output import format_variables
    from reqvault.variables import read_variables, update_variables

    key = load_encryption_secret(env)

    if import_file or set_vars or unset_vars:
        if import_file:
            incoming = _load_vars_file(import_file)
        else:
            current = read_variables(store, workspace_id, key)
            broken = [v["key"] for v in current if v.get("error")]
            if broken:
                click.echo(
                    f"ERROR: Cannot update, undecryptable variables: {', '.join(broken)}. "
                    "Use --import-vars to replace the whole set.",
                    err=True,
                )
                sys.exit(1)
            incoming = _apply_var_edits(current, set_vars, unset_vars, mark_secret)
        try:
            variables = update_variables(store, workspace_id, incoming, key)
        except ValueError as e:
            click.echo(f"ERROR: {e}", err=True)
            sys.exit(1)
        click.echo(f"Saved {len(variables)} variables for workspace '{workspace_id}'.")
        return

    variables = read_variables(store, workspace_id, key)
    click.echo(f"Workspace: {workspace_id}")
    click.echo(format_variables(variables, show_secrets=show_secrets))
    if any(v.get("error") for v in variables):
        sys.exit(1)


def _cmd_list_requests(list_fn, config, requests_dir_override=None):
    rdir, definitions = list_fn(config, requests_dir_override)
    if not definitions:
        if rdir:
            click.echo(f"No stored requests found in: {rdir}")
        else:
            click.echo("No requests directory found.")
            click.echo("Searched: ./requests/, ~/.reqvault/requests/")
        return

    click.echo(f"Requests from: {rdir}")
    click.echo(f"{len(definitions)} available:\n")
    for d in definitions:
        name = d["name"]
        desc = d.get("description", "")
        click.echo(f"  {name} — {desc}" if desc else f"  {name}")
        detail = f"{(d.get('method') or 'GET').upper()} {d.get('url', '')}"
        if d.get("workspace"):
            detail += f" | workspace: {d['workspace']}"
        click.echo(f"    {detail}")


def _cmd_health(config_path, store, env):
    from reqvault.crypto import secret_from_env

    click.echo("status: ok")
    click.echo(f"config: {config_path or '(none)'}")
    click.echo(f"store: {store.base_dir}")
    configured = "yes" if secret_from_env(env) else "no"
    click.echo(f"encryption secret: {configured}")


# ── Helpers ──────────────────────────────────────────────────────────────


def _configure_logging(debug):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_headers(header_tuples):
    """Parse -H 'Name: Value' tuples into a dict."""
    headers = {}
    for h in header_tuples:
        if ":" in h:
            k, v = h.split(":", 1)
            headers[k.strip()] = v.strip()
    return headers


def _resolve_timeout(*sources, default=30):
    """Return the first truthy timeout from sources, or default."""
    for t in sources:
        if t:
            return t
    return default


def _apply_var_edits(current, set_vars, unset_vars, mark_secret):
    """Apply --set-var / --unset-var to a decrypted variable list."""
    by_key = {v["key"]: {"key": v["key"], "value": v["value"], "isSecret": v["isSecret"]} for v in current}
    for spec in set_vars:
        if "=" not in spec:
            raise click.BadParameter(f"expected KEY=VALUE, got {spec!r}", param_hint="--set-var")
        k, val = spec.split("=", 1)
        k = k.strip()
        previous = by_key.get(k, {})
        by_key[k] = {
            "key": k,
            "value": val,
            "isSecret": mark_secret or previous.get("isSecret", False),
        }
    for k in unset_vars:
        by_key.pop(k.strip(), None)
    return list(by_key.values())


def _load_vars_file(path):
    """Read a YAML/JSON list of variables, or a plain mapping of key: value."""
    text = Path(path).read_text()
    data = json.loads(text) if path.endswith(".json") else yaml.safe_load(text)
    if isinstance(data, dict) and "variables" in data:
        data = data["variables"]
    if isinstance(data, dict):
        data = [{"key": k, "value": "" if v is None else str(v)} for k, v in data.items()]
    return data or []
