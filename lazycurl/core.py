"""lazycurl core - config loading, environments, request files, curl import."""

import logging
import shlex
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values

from lazycurl.exceptions import ConfigError, CurlParseError
from lazycurl.models import (
    BinaryBody,
    CurlOption,
    Environment,
    FormDataBody,
    HttpMethod,
    KeyValue,
    NoBody,
    RawBody,
    Request,
)

GLOBAL_DIR = Path.home() / ".lazycurl"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"

CWD_CONFIG_CANDIDATES = [
    ".lazycurl.yaml",
    ".lazycurl.yml",
    "lazycurl.yaml",
    "lazycurl.yml",
]

DEFAULT_ENVIRONMENT = "default"

logger = logging.getLogger(__name__)


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
      2. .lazycurl.yaml (variants) in CWD
      3. ~/.lazycurl/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns empty sections if not found.

    Stores '_config_dir' in the returned dict so env files can be
    resolved relative to the config file.
    """
    empty = {"defaults": {}, "environments": {}, "_config_dir": None}
    if config_path is None:
        return empty
    path = Path(config_path)
    if not path.exists():
        return empty
    data = _read_yaml(path)
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")

    environments = data.get("environments") or {}
    if not isinstance(environments, dict):
        raise ConfigError(f"{path}: 'environments' must be a mapping of name to variables")
    logger.debug("loaded config %s (%d environments)", path, len(environments))
    return {
        "defaults": data.get("defaults") or {},
        "environments": environments,
        "_config_dir": path.resolve().parent,
    }


# ── Environments ─────────────────────────────────────────────────────────


def load_environment(
    config: dict,
    name: str | None = None,
    env_file: str | None = None,
) -> Environment:
    """Build the Environment used for {{var}} substitution.

    Resolution:
      1. name (-e flag), else defaults.environment, else an empty
         "default" environment
      2. variables from config environments[name]
      3. overlaid with env_file (or defaults.env_file) read via dotenv;
         those values are marked secret
    """
    defaults = config.get("defaults", {})
    environments = config.get("environments", {})
    name = name or defaults.get("environment")

    if name in environments:
        environment = _environment_from_config(name, environments[name])
    elif name is None or name == DEFAULT_ENVIRONMENT:
        environment = Environment(DEFAULT_ENVIRONMENT)
    else:
        available = ", ".join(sorted(environments)) or "none defined"
        raise ConfigError(f"Environment '{name}' not found (available: {available})")

    env_file = env_file or defaults.get("env_file")
    if env_file:
        for key, value in load_dotenv_file(env_file, config.get("_config_dir")).items():
            environment.set_variable(key, value, is_secret=True)
    logger.debug("environment %s: %s", environment.name, environment.masked())
    return environment


def load_dotenv_file(env_file: str, base_dir: str | Path | None = None) -> dict[str, str]:
    """Read a .env file. Relative paths resolve against base_dir, then CWD."""
    path = Path(env_file)
    if not path.is_absolute() and base_dir and (Path(base_dir) / path).exists():
        path = Path(base_dir) / path
    if not path.exists():
        raise ConfigError(f"Env file not found: {env_file}")
    return {k: v for k, v in dotenv_values(str(path)).items() if v is not None}


def _environment_from_config(name: str, variables: Any) -> Environment:
    """Variables may be plain values or {value: ..., secret: true}."""
    if variables is None:
        variables = {}
    if not isinstance(variables, dict):
        raise ConfigError(f"Environment '{name}' must be a mapping of variables")
    environment = Environment(name)
    for key, spec in variables.items():
        if isinstance(spec, dict):
            value = spec.get("value", "")
            secret = bool(spec.get("secret", False))
        else:
            value, secret = spec, False
        environment.add_variable(str(key), "" if value is None else str(value), secret)
    return environment


# ── Request files ────────────────────────────────────────────────────────


def load_request(path: str | Path) -> Request:
    """Load a request from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Request file not found: {path}")
    data = _read_yaml(path)
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    try:
        return request_from_dict(data)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from e


def request_from_dict(data: dict) -> Request:
    """Build a Request from its YAML form.

    Example:

    url: https://api.example.com/users
    method: POST
    headers:                      # mapping, or list of {key, value, enabled}
      Content-Type: application/json
    query:
      page: "1"
    body:                         # string, or one of raw / form / binary
      raw: '{"name": "{{user}}"}'
    options:                      # "FLAG", "FLAG VALUE" or {flag, value, enabled}
      - -s
      - --max-time 10
    """
    url = data.get("url")
    if not isinstance(url, str) or not url:
        raise ConfigError("'url' is required")

    try:
        method = HttpMethod.parse(str(data.get("method") or "GET"))
    except ValueError as e:
        raise ConfigError(str(e)) from e

    return Request(
        url=url,
        method=method,
        headers=_key_values(data.get("headers"), "headers"),
        query_params=_key_values(data.get("query", data.get("query_params")), "query"),
        body=_body_from(data.get("body")),
        options=[parse_option(o) for o in _as_list(data.get("options"), "options")],
    )


def parse_option(spec: Any) -> CurlOption:
    """Parse "FLAG", "FLAG VALUE" or {flag, value, enabled}."""
    if isinstance(spec, dict):
        flag = spec.get("flag")
        if not flag:
            raise ConfigError(f"option without 'flag': {spec}")
        value = spec.get("value")
        return CurlOption(
            str(flag),
            None if value is None else str(value),
            bool(spec.get("enabled", True)),
        )
    parts = str(spec).strip().split(None, 1)
    if not parts:
        raise ConfigError("empty option")
    return CurlOption(parts[0], parts[1] if len(parts) > 1 else None)


def _key_values(raw: Any, section: str) -> list[KeyValue]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        return [KeyValue(str(k), "" if v is None else str(v)) for k, v in raw.items()]
    items = []
    for entry in _as_list(raw, section):
        if not isinstance(entry, dict) or "key" not in entry:
            raise ConfigError(f"{section}: entries need 'key' and 'value', got {entry!r}")
        value = entry.get("value")
        items.append(
            KeyValue(
                str(entry["key"]),
                "" if value is None else str(value),
                bool(entry.get("enabled", True)),
            ),
        )
    return items


def _body_from(raw: Any):
    if raw is None:
        return NoBody()
    if isinstance(raw, str):
        return RawBody(raw)
    if not isinstance(raw, dict) or len(raw) != 1:
        raise ConfigError("body must be a string or one of {raw, form, binary}")
    kind, value = next(iter(raw.items()))
    if kind == "raw":
        return RawBody("" if value is None else str(value))
    if kind == "form":
        return FormDataBody(tuple(_key_values(value, "body.form")))
    if kind == "binary":
        return BinaryBody(str(value))
    raise ConfigError(f"unknown body type '{kind}'")


def _as_list(raw: Any, section: str) -> list:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError(f"'{section}' must be a list")
    return raw


def _read_yaml(path: Path) -> Any:
    try:
        with open(path) as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e


# ── Curl import ──────────────────────────────────────────────────────────

# Flags that never take a value; anything else unknown consumes the next token.
_BOOLEAN_FLAGS = {
    "-i", "--include", "-v", "--verbose", "-s", "--silent", "-S", "--show-error",
    "-L", "--location", "-k", "--insecure", "-I", "--head", "-f", "--fail",
    "--compressed", "-#", "--progress-bar", "-N", "--no-buffer", "-G", "--get",
    "--http1.1", "--http2", "-4", "-6",
}


def parse_curl(curl_command: str) -> Request:
    """Parse a pasted curl command string into a Request.

    Handles -X, -H, -d/--data*, --json, --data-binary, -F, --url, quoted
    strings and escaped newlines. Other flags are kept as CurlOptions.
    """
    cmd = curl_command.replace("\\\r\n", " ").replace("\\\n", " ").strip()
    try:
        tokens = shlex.split(cmd)
    except ValueError as e:
        raise CurlParseError(f"Parse error: {e}") from e

    if tokens and tokens[0] == "curl":
        tokens = tokens[1:]

    request = Request(url="")
    form_items: list[KeyValue] = []
    explicit_method = False
    json_body = False

    i = 0
    while i < len(tokens):
        tok = tokens[i]
        nxt = tokens[i + 1] if i + 1 < len(tokens) else None

        if tok in ("-X", "--request") and nxt is not None:
            try:
                request.set_method(nxt)
            except ValueError as e:
                raise CurlParseError(str(e)) from e
            explicit_method = True
            i += 2
        elif tok in ("-H", "--header") and nxt is not None:
            key, sep, value = nxt.partition(":")
            if sep:
                request.add_header(key.strip(), value.strip())
            i += 2
        elif tok in ("-d", "--data", "--data-raw", "--data-ascii") and nxt is not None:
            request.set_body(RawBody(nxt))
            i += 2
        elif tok == "--data-binary" and nxt is not None:
            if nxt.startswith("@"):
                request.set_body(BinaryBody(nxt[1:]))
            else:
                request.set_body(RawBody(nxt))
            i += 2
        elif tok == "--json" and nxt is not None:
            request.set_body(RawBody(nxt))
            json_body = True
            i += 2
        elif tok in ("-F", "--form") and nxt is not None:
            key, _, value = nxt.partition("=")
            form_items.append(KeyValue(key.strip(), value))
            i += 2
        elif tok == "--url" and nxt is not None:
            request.url = nxt
            i += 2
        elif tok.startswith("-") and len(tok) > 1:
            if tok in _BOOLEAN_FLAGS or "=" in tok or nxt is None or _looks_like_arg(nxt):
                request.add_option(tok)
                i += 1
            else:
                request.add_option(tok, nxt)
                i += 2
        else:
            # Positional argument = URL
            if not request.url:
                request.url = tok
            i += 1

    if form_items:
        request.set_body(FormDataBody(tuple(form_items)))
    if json_body:
        _set_default_header(request, "Content-Type", "application/json")
        _set_default_header(request, "Accept", "application/json")
    has_body = not isinstance(request.body, NoBody)
    if (
        has_body
        and not explicit_method
        and request.method == HttpMethod.GET
        and not _has_get_flag(request)
    ):
        request.set_method(HttpMethod.POST)
    if not request.url:
        raise CurlParseError("No URL found in curl command")
    return request


def _looks_like_arg(token: str) -> bool:
    return token.startswith("-") or "://" in token


def _set_default_header(request: Request, key: str, value: str) -> None:
    """Add key unless a header with the same name (any case) is present."""
    if not any(h.key.lower() == key.lower() for h in request.headers):
        request.add_header(key, value)


def _has_get_flag(request: Request) -> bool:
    return any(o.flag in ("-G", "--get") for o in request.options)
