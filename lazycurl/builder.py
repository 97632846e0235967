"""lazycurl builder - render a Request into a curl command line."""

from __future__ import annotations

import enum
import re

from lazycurl.models import (
    BinaryBody,
    CurlOption,
    Environment,
    FormDataBody,
    HttpMethod,
    RawBody,
    Request,
)

TOOL = "curl"

STATUS_MARKER_PREFIX = "__LAZYCURL_HTTP_STATUS__"
# Literal backslash-n: curl's --write-out expands it to a newline.
STATUS_MARKER_FORMAT = "\\n" + STATUS_MARKER_PREFIX + "%{http_code}\\n"
INCLUDE_FLAG = "-i"

_PLACEHOLDER_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_SHELL_SPECIAL = frozenset(" \t\n\r\"'\\|&;()<>$`*?[]{}!#~")
_SAFE_URL_PREFIXES = ("http://", "https://", "ftp://")
_UNRESERVED = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~",
)


class BuildMode(enum.Enum):
    PREVIEW = "preview"
    EXECUTION = "execution"


# ── Environment substitution ─────────────────────────────────────────────


def substitute(text: str, environment: Environment | None) -> str:
    """Resolve {{name}} and {{name:default}} tokens in text.

    - {{name}} -> environment value, or left untouched if undefined
    - {{name:default}} -> environment value, or the literal default
    Replacement values are not scanned again.
    """
    if not text or "{{" not in text:
        return text

    def _replace(m: re.Match) -> str:
        name, sep, default = m.group(1).partition(":")
        value = environment.get_variable(name) if environment is not None else None
        if value is not None:
            return value
        if sep:
            return default
        return m.group(0)

    return _PLACEHOLDER_RE.sub(_replace, text)


# ── Quoting and encoding ─────────────────────────────────────────────────


def needs_quoting(arg: str) -> bool:
    """True if arg must be quoted to survive a POSIX shell unchanged.

    URLs are never quoted so the preview stays readable.
    """
    if arg.startswith(_SAFE_URL_PREFIXES):
        return False
    if not arg:
        return True
    return any(c in _SHELL_SPECIAL for c in arg)


def quote(arg: str) -> str:
    """Single-quote arg; embedded ' becomes '"'"'."""
    return "'" + arg.replace("'", "'\"'\"'") + "'"


def percent_encode(text: str) -> str:
    """Encode every byte except A-Z a-z 0-9 - _ . ~ as %XX."""
    out = []
    for byte in text.encode("utf-8"):
        ch = chr(byte)
        if ch in _UNRESERVED:
            out.append(ch)
        else:
            out.append(f"%{byte:02X}")
    return "".join(out)


def format_command(args: list[str]) -> str:
    """Join args with spaces, quoting the ones that need it."""
    parts = []
    for arg in args:
        if needs_quoting(arg) and not arg.startswith(("'", '"')):
            parts.append(quote(arg))
        else:
            parts.append(arg)
    return " ".join(parts)


# ── Command building ─────────────────────────────────────────────────────


def build_args(
    request: Request,
    environment: Environment | None = None,
    mode: BuildMode = BuildMode.PREVIEW,
) -> list[str]:
    """Render request into an argv list, unquoted.

    Execution mode adds -i and a --write-out status marker unless the
    user's own options already provide them.
    """
    execution = mode is BuildMode.EXECUTION
    args = [TOOL]

    has_write_out = False
    has_include = False
    for option in request.options:
        if not option.enabled:
            continue
        if execution and _is_include_flag(option.flag):
            has_include = True
        if execution and _is_write_out_flag(option.flag):
            has_write_out = True
            args.extend(_write_out_args(option, environment))
            continue
        args.append(option.flag)
        if option.value is not None:
            args.append(substitute(option.value, environment))

    if execution and not has_include:
        args.append(INCLUDE_FLAG)
    if execution and not has_write_out:
        args.extend(["-w", STATUS_MARKER_FORMAT])

    if request.method is not None and request.method != HttpMethod.default():
        args.extend(["-X", request.method.value])

    for header in request.headers:
        if not header.enabled:
            continue
        value = substitute(header.value, environment)
        args.extend(["-H", f"{header.key}: {value}"])

    args.extend(_body_args(request, environment))
    args.append(build_url(request, environment))
    return args


def build(
    request: Request,
    environment: Environment | None = None,
    mode: BuildMode = BuildMode.PREVIEW,
) -> str:
    """Render request into one shell-safe command string."""
    return format_command(build_args(request, environment, mode))


def build_preview(request: Request, environment: Environment | None = None) -> str:
    return build(request, environment, BuildMode.PREVIEW)


def build_for_execution(request: Request, environment: Environment | None = None) -> str:
    return build(request, environment, BuildMode.EXECUTION)


def build_url(request: Request, environment: Environment | None = None) -> str:
    """Substituted URL with enabled query params appended."""
    url = substitute(request.url, environment)
    pairs = [
        f"{p.key}={percent_encode(substitute(p.value, environment))}"
        for p in request.query_params
        if p.enabled
    ]
    if not pairs:
        return url
    separator = "&" if "?" in url else "?"
    return url + separator + "&".join(pairs)


# ── Helpers ──────────────────────────────────────────────────────────────


def _body_args(request: Request, environment: Environment | None) -> list[str]:
    body = request.body
    if isinstance(body, RawBody):
        if not body.content.strip():
            return []
        return ["-d", substitute(body.content, environment)]
    if isinstance(body, FormDataBody):
        args = []
        for item in body.items:
            if item.enabled:
                args.extend(["-F", f"{item.key}={substitute(item.value, environment)}"])
        return args
    if isinstance(body, BinaryBody):
        return ["--data-binary", f"@{body.path}"]
    return []


def _write_out_args(option: CurlOption, environment: Environment | None) -> list[str]:
    """Append the status marker to a user-supplied write-out option."""
    inline = _write_out_inline_value(option.flag)
    if inline is not None:
        if STATUS_MARKER_PREFIX in inline:
            return [option.flag]
        prefix = "--write-out=" if option.flag.startswith("--write-out=") else "-w"
        return [prefix + inline + STATUS_MARKER_FORMAT]

    if option.value is None:
        return [option.flag, STATUS_MARKER_FORMAT]
    value = substitute(option.value, environment)
    if STATUS_MARKER_PREFIX in value:
        return [option.flag, value]
    return [option.flag, value + STATUS_MARKER_FORMAT]


def _is_write_out_flag(flag: str) -> bool:
    return flag.startswith(("-w", "--write-out"))


def _write_out_inline_value(flag: str) -> str | None:
    if flag.startswith("--write-out="):
        return flag[len("--write-out=") :]
    if flag.startswith("-w") and len(flag) > 2:
        return flag[2:]
    return None


def _is_include_flag(flag: str) -> bool:
    return flag in ("-i", "--include")
