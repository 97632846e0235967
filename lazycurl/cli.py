"""lazycurl CLI - build curl commands from structured requests and run them."""

import codecs
import logging
import sys

import click

DEFAULT_POLL_INTERVAL = 0.05

TOOL_HELP = """\
lazycurl - build, preview and run curl commands.

Assembles a request from flags, a YAML request file or a pasted curl
command, substitutes {{variables}} from an environment, then runs curl
and streams its output.

\b
MODES
─────
  Direct:      lazycurl URL [options]
  Request file: lazycurl -r requests/login.yaml [options]
  Curl import: lazycurl --import-curl "curl ..."

\b
EXAMPLES
────────
  lazycurl https://example.com
  lazycurl https://api.example.com/users -X POST -d '{"name":"test"}' \\
      -H "Content-Type: application/json"
  lazycurl "{{api_url}}/users" -e dev -q page=2
  lazycurl https://example.com --preview

\b
PLACEHOLDERS
────────────
  {{name}}           Value from the active environment (left as-is if undefined)
  {{name:default}}   Value from the environment, else the literal default

  Placeholders are resolved in the URL, query values, header values,
  option values, raw bodies and form values.

\b
ENVIRONMENTS
────────────
  Environment resolution:
    1. -e/--env NAME
    2. defaults.environment from config
    3. empty "default" environment
  Then --env-file (or defaults.env_file) is overlaid via dotenv,
  then -v key=value overrides.

  List environments:
    lazycurl --list-envs

\b
CONFIG FILE FORMAT (.lazycurl.yaml)
───────────────────────────────────
  Config resolution order:
    1. -c/--config flag (explicit path)
    2. .lazycurl.yaml / .lazycurl.yml / lazycurl.yaml / lazycurl.yml in CWD
    3. ~/.lazycurl/config.yaml (global)

  \b
  defaults:
    environment: dev
    env_file: .env
    poll_interval: 0.05             # seconds between output polls
    headers:
      Accept: application/json
    options:
      - -s
  environments:
    dev:
      api_url: http://localhost:8000
      token:
        value: dev-token
        secret: true

\b
OUTPUT
──────
  The preview command is printed to stderr, curl's output streams to
  stdout/stderr as it arrives (response headers included), then a summary:
    STATUS: 200
    TIME: 45ms
  The exit code is curl's exit code.
  --raw suppresses the preview and summary lines.
"""


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("url", required=False)
@click.option("-X", "--method", default=None, help="HTTP method. Default: GET.")
@click.option(
    "-H",
    "--header",
    multiple=True,
    help="HTTP header as 'Name: Value'. Repeatable.",
)
@click.option(
    "-q",
    "--query",
    multiple=True,
    help="Query parameter as key=value. Value is percent-encoded. Repeatable.",
)
@click.option("-d", "--data", "data", default=None, help="Raw request body.")
@click.option(
    "-F",
    "--form",
    "form_fields",
    multiple=True,
    help="Form field as key=value. Repeatable. Mutually exclusive with --data.",
)
@click.option(
    "--data-binary",
    "data_binary",
    default=None,
    metavar="PATH",
    help="Send a file as the request body.",
)
@click.option(
    "-o",
    "--curl-opt",
    "curl_opts",
    multiple=True,
    help="Extra curl flag as 'FLAG' or 'FLAG VALUE', e.g. '--max-time 10'. Repeatable.",
)
@click.option(
    "-r",
    "--request",
    "request_file",
    default=None,
    help="YAML request file to start from.",
)
@click.option(
    "--import-curl",
    "import_curl",
    default=None,
    help="Start from a pasted curl command string.",
)
@click.option("-e", "--env", "env_name", default=None, help="Environment name from config.")
@click.option("--env-file", default=None, help=".env file with extra variables.")
@click.option(
    "-v",
    "--var",
    multiple=True,
    help="Variable as key=value. Overrides environment values. Repeatable.",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .lazycurl.yaml in CWD, then ~/.lazycurl/config.yaml.",
)
@click.option(
    "--preview",
    is_flag=True,
    default=False,
    help="Print the command without running it.",
)
@click.option(
    "--show-exec",
    is_flag=True,
    default=False,
    help="Show the instrumented command that is actually executed.",
)
@click.option(
    "--list-envs",
    "show_list_envs",
    is_flag=True,
    default=False,
    help="List environments from config (secret values masked).",
)
@click.option(
    "--raw",
    is_flag=True,
    default=False,
    help="Only stream curl's output. Useful for piping.",
)
@click.option("--verbose", is_flag=True, default=False, help="Debug logging on stderr.")
@click.option(
    "--poll-interval",
    type=float,
    default=None,
    help=f"Seconds between output polls. Default: {DEFAULT_POLL_INTERVAL}.",
)
def main(
    url,
    method,
    header,
    query,
    data,
    form_fields,
    data_binary,
    curl_opts,
    request_file,
    import_curl,
    env_name,
    env_file,
    var,
    config_file,
    preview,
    show_exec,
    show_list_envs,
    raw,
    verbose,
    poll_interval,
):
    """Build and run curl commands."""
    from lazycurl.builder import BuildMode, build, build_args, format_command
    from lazycurl.core import load_config, load_environment, resolve_config_path
    from lazycurl.exceptions import LazycurlError

    _configure_logging(verbose)

    # --- Validate mutually exclusive options ---
    body_sources = [bool(data), bool(form_fields), bool(data_binary)]
    if sum(body_sources) > 1:
        click.echo("ERROR: --data, --form and --data-binary are mutually exclusive.", err=True)
        sys.exit(1)
    if request_file and import_curl:
        click.echo("ERROR: --request and --import-curl are mutually exclusive.", err=True)
        sys.exit(1)

    try:
        config = load_config(resolve_config_path(config_file))
        defaults = config.get("defaults", {})

        if show_list_envs:
            _cmd_list_envs(config)
            return

        if not (url or request_file or import_curl):
            ctx = click.get_current_context()
            click.echo(ctx.get_help())
            ctx.exit(1)

        environment = load_environment(config, env_name, env_file)
        for key, value in _parse_pairs(var, "--var"):
            environment.set_variable(key, value)

        request = _assemble_request(
            url=url,
            method=method,
            header=header,
            query=query,
            data=data,
            form_fields=form_fields,
            data_binary=data_binary,
            curl_opts=curl_opts,
            request_file=request_file,
            import_curl=import_curl,
            defaults=defaults,
        )
        interval = _resolve_poll_interval(poll_interval, defaults.get("poll_interval"))
    except LazycurlError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)

    preview_text = build(request, environment)
    if preview:
        click.echo(preview_text)
        return

    exec_args = build_args(request, environment, BuildMode.EXECUTION)
    if not raw:
        shown = format_command(exec_args) if show_exec else preview_text
        click.echo(f"$ {shown}", err=True)

    exit_code = _cmd_run(exec_args, raw, interval)
    sys.exit(exit_code)


# ── Subcommand implementations ──────────────────────────────────────────


def _cmd_run(argv, raw, poll_interval):
    """Run curl, streaming output. Returns the process exit status."""
    from lazycurl.exceptions import ExecutionError
    from lazycurl.executor import CommandExecutor, Stream
    from lazycurl.output import MarkerFilter, format_result

    stdout_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    stderr_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    marker_filter = MarkerFilter()

    def _sink(stream, chunk):
        if stream is Stream.STDOUT:
            text = marker_filter.feed(stdout_decoder.decode(chunk))
            if text:
                click.echo(text, nl=False)
        else:
            text = stderr_decoder.decode(chunk)
            if text:
                click.echo(text, nl=False, err=True)

    with CommandExecutor() as executor:
        try:
            result = executor.execute(argv, sink=_sink, poll_interval=poll_interval)
        except ExecutionError as e:
            click.echo(f"ERROR: {e}", err=True)
            return 1

    tail = marker_filter.feed(stdout_decoder.decode(b"", final=True)) + marker_filter.flush()
    if tail:
        click.echo(tail, nl=False)

    if not raw:
        if result.stdout and not result.stdout.endswith(b"\n"):
            click.echo(err=True)
        click.echo(format_result(result), err=True)

    if result.exit_code is None:
        return 1
    return result.exit_code


def _cmd_list_envs(config):
    from lazycurl.core import load_environment

    environments = config.get("environments", {})
    if not environments:
        click.echo("No environments defined.")
        click.echo("Add an 'environments:' section to .lazycurl.yaml.")
        return

    active = config.get("defaults", {}).get("environment")
    click.echo(f"{len(environments)} environment(s):\n")
    for name in environments:
        marker = " (default)" if name == active else ""
        click.echo(f"  {name}{marker}")
        env = load_environment({"environments": environments}, name)
        for key, value in env.masked().items():
            click.echo(f"    {key} = {value}")
        click.echo()


# ── Helpers ──────────────────────────────────────────────────────────────


def _assemble_request(
    url,
    method,
    header,
    query,
    data,
    form_fields,
    data_binary,
    curl_opts,
    request_file,
    import_curl,
    defaults,
):
    """Build the Request: file / curl import first, then CLI flags on top."""
    from lazycurl.core import load_request, parse_curl, parse_option
    from lazycurl.exceptions import ConfigError
    from lazycurl.models import BinaryBody, FormDataBody, KeyValue, RawBody, Request

    if request_file:
        request = load_request(request_file)
    elif import_curl:
        request = parse_curl(import_curl)
    else:
        request = Request(url=url)

    if url:
        request.url = url
    if method:
        try:
            request.set_method(method)
        except ValueError as e:
            raise ConfigError(str(e)) from e

    default_headers = [KeyValue(k, str(v)) for k, v in (defaults.get("headers") or {}).items()]
    default_options = [parse_option(o) for o in defaults.get("options") or []]
    request.headers[:0] = default_headers
    request.options[:0] = default_options

    for key, value in _parse_headers(header):
        request.add_header(key, value)
    for key, value in _parse_pairs(query, "--query"):
        request.add_query_param(key, value)
    for spec in curl_opts:
        request.options.append(parse_option(spec))

    if data:
        request.set_body(RawBody(data))
    elif form_fields:
        items = [KeyValue(k, v) for k, v in _parse_pairs(form_fields, "--form")]
        request.set_body(FormDataBody(tuple(items)))
    elif data_binary:
        request.set_body(BinaryBody(data_binary))
    return request


def _parse_headers(header_tuples):
    """Parse -H 'Name: Value' tuples into (name, value) pairs, in order."""
    headers = []
    for h in header_tuples:
        if ":" in h:
            k, v = h.split(":", 1)
            headers.append((k.strip(), v.strip()))
    return headers


def _parse_pairs(specs, option_name):
    """Parse key=value specs into (key, value) pairs. Repeated keys are kept."""
    from lazycurl.exceptions import ConfigError

    pairs = []
    for spec in specs:
        if "=" not in spec:
            raise ConfigError(f"{option_name} expects key=value, got '{spec}'")
        k, v = spec.split("=", 1)
        pairs.append((k.strip(), v))
    return pairs


def _resolve_poll_interval(*sources, default=DEFAULT_POLL_INTERVAL):
    """Return the first interval set in sources, or default. Must be > 0."""
    from lazycurl.exceptions import ConfigError

    for t in sources:
        if t is None:
            continue
        try:
            interval = float(t)
        except (TypeError, ValueError):
            raise ConfigError(f"poll interval must be a number, got {t!r}") from None
        if interval <= 0:
            raise ConfigError(f"poll interval must be positive, got {t!r}")
        return interval
    return default


def _configure_logging(verbose):
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )
