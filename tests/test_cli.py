"""CLI tests: preview assembly, error handling and runs against a fake curl."""

import yaml

from lazycurl.cli import main

SUCCESS_SCRIPT = (
    "printf 'HTTP/1.1 200 OK\\r\\nContent-Type: text/plain\\r\\n\\r\\nhello'\n"
    "printf '\\n__LAZYCURL_HTTP_STATUS__200\\n'"
)


def _write_config(project, data):
    (project / ".lazycurl.yaml").write_text(yaml.dump(data))


# ── Preview ──────────────────────────────────────────────────────────────


class TestPreview:
    def test_plain_get(self, runner, tmp_project):
        result = runner.invoke(main, ["https://example.com", "--preview"])
        assert result.exit_code == 0
        assert result.output == "curl https://example.com\n"

    def test_method_header_body(self, runner, tmp_project):
        result = runner.invoke(
            main,
            [
                "https://example.com/users",
                "-X",
                "post",
                "-H",
                "Content-Type: application/json",
                "-d",
                '{"name": "test"}',
                "--preview",
            ],
        )
        assert result.exit_code == 0
        assert result.output == (
            "curl -X POST -H 'Content-Type: application/json' "
            "-d '{\"name\": \"test\"}' https://example.com/users\n"
        )

    def test_query_is_encoded(self, runner, tmp_project):
        result = runner.invoke(
            main,
            ["https://example.com/search", "-q", "q=hello world", "-q", "page=2", "--preview"],
        )
        assert result.output == "curl https://example.com/search?q=hello%20world&page=2\n"

    def test_form_fields(self, runner, tmp_project):
        result = runner.invoke(
            main,
            ["https://example.com", "-F", "name=bob", "-F", "file=@a.png", "--preview"],
        )
        assert result.output == "curl -F name=bob -F file=@a.png https://example.com\n"

    def test_repeated_query_keys_kept(self, runner, tmp_project):
        result = runner.invoke(
            main,
            ["https://x.io", "-q", "tag=a", "-q", "tag=b", "--preview"],
        )
        assert result.output == "curl https://x.io?tag=a&tag=b\n"

    def test_repeated_form_fields_kept(self, runner, tmp_project):
        result = runner.invoke(
            main,
            ["https://x.io", "-F", "f=@a", "-F", "f=@b", "--preview"],
        )
        assert result.output == "curl -F f=@a -F f=@b https://x.io\n"

    def test_repeated_headers_kept(self, runner, tmp_project):
        result = runner.invoke(
            main,
            ["https://x.io", "-H", "Accept: a/b", "-H", "Accept: c/d", "--preview"],
        )
        assert result.output == "curl -H 'Accept: a/b' -H 'Accept: c/d' https://x.io\n"

    def test_repeated_var_last_wins(self, runner, tmp_project):
        result = runner.invoke(
            main,
            [
                "{{host}}/a",
                "-v",
                "host=https://one.test",
                "-v",
                "host=https://two.test",
                "--preview",
            ],
        )
        assert result.output == "curl https://two.test/a\n"

    def test_curl_opt(self, runner, tmp_project):
        result = runner.invoke(
            main,
            ["https://example.com", "--curl-opt=--max-time 10", "--curl-opt=-L", "--preview"],
        )
        assert result.output == "curl --max-time 10 -L https://example.com\n"

    def test_environment_from_config(self, runner, tmp_project):
        _write_config(
            tmp_project,
            {"environments": {"dev": {"api_url": "http://localhost:8000"}}},
        )
        result = runner.invoke(main, ["{{api_url}}/users", "-e", "dev", "--preview"])
        assert result.exit_code == 0
        assert result.output == "curl http://localhost:8000/users\n"

    def test_config_defaults(self, runner, tmp_project):
        _write_config(
            tmp_project,
            {
                "defaults": {
                    "environment": "dev",
                    "headers": {"Accept": "application/json"},
                    "options": ["-s"],
                },
                "environments": {"dev": {"api_url": "http://localhost:8000"}},
            },
        )
        result = runner.invoke(main, ["{{api_url}}/users", "--preview"])
        assert result.output == (
            "curl -s -H 'Accept: application/json' http://localhost:8000/users\n"
        )

    def test_var_overrides_environment(self, runner, tmp_project):
        _write_config(tmp_project, {"environments": {"dev": {"host": "https://dev.test"}}})
        result = runner.invoke(
            main,
            ["{{host}}/ping", "-e", "dev", "-v", "host=https://override.test", "--preview"],
        )
        assert result.output == "curl https://override.test/ping\n"

    def test_undefined_placeholder_left_as_is(self, runner, tmp_project):
        result = runner.invoke(
            main,
            ["https://example.com", "-H", "X-Token: {{token}}", "--preview"],
        )
        assert "'X-Token: {{token}}'" in result.output

    def test_placeholder_default(self, runner, tmp_project):
        result = runner.invoke(main, ["{{base:https://fallback.test}}/a", "--preview"])
        assert result.output == "curl https://fallback.test/a\n"

    def test_env_file(self, runner, tmp_project):
        (tmp_project / ".env").write_text("TOKEN=abc123\n")
        result = runner.invoke(
            main,
            [
                "https://example.com",
                "-H",
                "Authorization: Bearer {{TOKEN}}",
                "--env-file",
                ".env",
                "--preview",
            ],
        )
        assert "'Authorization: Bearer abc123'" in result.output

    def test_request_file(self, runner, tmp_project):
        request_file = tmp_project / "login.yaml"
        request_file.write_text(
            yaml.dump(
                {
                    "url": "https://example.com/login",
                    "method": "POST",
                    "headers": {"Content-Type": "application/json"},
                    "body": {"raw": '{"user": "{{user:admin}}"}'},
                },
            ),
        )
        result = runner.invoke(main, ["-r", str(request_file), "--preview"])
        assert result.exit_code == 0
        assert result.output == (
            "curl -X POST -H 'Content-Type: application/json' "
            "-d '{\"user\": \"admin\"}' https://example.com/login\n"
        )

    def test_request_file_with_url_override(self, runner, tmp_project):
        request_file = tmp_project / "r.yaml"
        request_file.write_text(yaml.dump({"url": "https://example.com"}))
        result = runner.invoke(main, ["https://other.test", "-r", str(request_file), "--preview"])
        assert result.output == "curl https://other.test\n"

    def test_import_curl(self, runner, tmp_project):
        result = runner.invoke(
            main,
            ["--import-curl", "curl -s -H 'Accept: text/plain' https://example.com", "--preview"],
        )
        assert result.exit_code == 0
        assert result.output == "curl -s -H 'Accept: text/plain' https://example.com\n"


# ── Errors ───────────────────────────────────────────────────────────────


class TestErrors:
    def test_no_url_shows_help(self, runner, tmp_project):
        result = runner.invoke(main, [])
        assert result.exit_code == 1
        assert "Usage:" in result.output
        assert "PLACEHOLDERS" in result.output

    def test_body_sources_exclusive(self, runner, tmp_project):
        result = runner.invoke(main, ["https://x.test", "-d", "a", "-F", "b=1"])
        assert result.exit_code == 1
        assert "mutually exclusive" in result.output

    def test_request_and_import_exclusive(self, runner, tmp_project):
        result = runner.invoke(main, ["-r", "x.yaml", "--import-curl", "curl https://x.test"])
        assert result.exit_code == 1
        assert "--request and --import-curl are mutually exclusive" in result.output

    def test_unknown_environment(self, runner, tmp_project):
        _write_config(tmp_project, {"environments": {"dev": {}}})
        result = runner.invoke(main, ["https://x.test", "-e", "staging", "--preview"])
        assert result.exit_code == 1
        assert "Environment 'staging' not found" in result.output

    def test_bad_var(self, runner, tmp_project):
        result = runner.invoke(main, ["https://x.test", "-v", "novalue", "--preview"])
        assert result.exit_code == 1
        assert "--var expects key=value" in result.output

    def test_bad_method(self, runner, tmp_project):
        result = runner.invoke(main, ["https://x.test", "-X", "FETCH", "--preview"])
        assert result.exit_code == 1
        assert "Unknown HTTP method" in result.output

    def test_missing_request_file(self, runner, tmp_project):
        result = runner.invoke(main, ["-r", "missing.yaml", "--preview"])
        assert result.exit_code == 1
        assert "Request file not found" in result.output

    def test_negative_poll_interval(self, runner, tmp_project):
        result = runner.invoke(main, ["https://x.test", "--poll-interval=-1"])
        assert result.exit_code == 1
        assert "poll interval must be positive" in result.output

    def test_zero_poll_interval(self, runner, tmp_project):
        result = runner.invoke(main, ["https://x.test", "--poll-interval", "0"])
        assert result.exit_code == 1
        assert "poll interval must be positive" in result.output

    def test_non_numeric_poll_interval_in_config(self, runner, tmp_project):
        _write_config(tmp_project, {"defaults": {"poll_interval": "fast"}})
        result = runner.invoke(main, ["https://x.test"])
        assert result.exit_code == 1
        assert "ERROR: poll interval must be a number, got 'fast'" in result.output

    def test_bad_import(self, runner, tmp_project):
        result = runner.invoke(main, ["--import-curl", "curl -v", "--preview"])
        assert result.exit_code == 1
        assert "No URL found" in result.output


# ── Running ──────────────────────────────────────────────────────────────


class TestRun:
    def test_success(self, runner, tmp_project, fake_curl):
        fake_curl(SUCCESS_SCRIPT)
        result = runner.invoke(main, ["https://example.com"])
        assert result.exit_code == 0
        assert "$ curl https://example.com" in result.output
        assert "HTTP/1.1 200 OK" in result.output
        assert "hello" in result.output
        assert "__LAZYCURL_HTTP_STATUS__" not in result.output
        assert "STATUS: 200" in result.output
        assert "TIME: " in result.output

    def test_instrumented_args(self, runner, tmp_project, fake_curl):
        fake_curl('printf "%s\\n" "$@"')
        result = runner.invoke(main, ["https://example.com", "--raw"])
        assert result.exit_code == 0
        assert result.output.splitlines() == [
            "-i",
            "-w",
            "\\n__LAZYCURL_HTTP_STATUS__%{http_code}\\n",
            "https://example.com",
        ]

    def test_show_exec(self, runner, tmp_project, fake_curl):
        fake_curl("exit 0")
        result = runner.invoke(main, ["https://example.com", "--show-exec"])
        assert (
            "$ curl -i -w '\\n__LAZYCURL_HTTP_STATUS__%{http_code}\\n' https://example.com"
            in result.output
        )

    def test_raw_skips_preview_and_summary(self, runner, tmp_project, fake_curl):
        fake_curl(SUCCESS_SCRIPT)
        result = runner.invoke(main, ["https://example.com", "--raw"])
        assert result.exit_code == 0
        assert "hello" in result.output
        assert "$ curl" not in result.output
        assert "STATUS:" not in result.output

    def test_curl_failure(self, runner, tmp_project, fake_curl):
        fake_curl('echo "curl: (6) Could not resolve host: nope.invalid" >&2; exit 6')
        result = runner.invoke(main, ["https://nope.invalid"])
        assert result.exit_code == 6
        assert "curl: (6) Could not resolve host" in result.output
        assert "EXIT: 6" in result.output
        assert "ERROR: Command failed with exit code 6: Couldn't resolve host" in result.output

    def test_killed_by_signal(self, runner, tmp_project, fake_curl):
        fake_curl("kill -9 $$")
        result = runner.invoke(main, ["https://example.com"])
        assert result.exit_code == 1
        assert "Process terminated by signal 9" in result.output

    def test_curl_not_installed(self, runner, tmp_project, tmp_path, monkeypatch):
        empty = tmp_path / "empty"
        empty.mkdir()
        monkeypatch.setenv("PATH", str(empty))
        result = runner.invoke(main, ["https://example.com"])
        assert result.exit_code == 1
        assert "ERROR: Failed to start curl" in result.output

    def test_poll_interval_from_config(self, runner, tmp_project, fake_curl):
        _write_config(tmp_project, {"defaults": {"poll_interval": 0.01}})
        fake_curl(SUCCESS_SCRIPT)
        result = runner.invoke(main, ["https://example.com"])
        assert result.exit_code == 0
        assert "STATUS: 200" in result.output


# ── --list-envs ──────────────────────────────────────────────────────────


class TestListEnvs:
    def test_no_environments(self, runner, tmp_project):
        result = runner.invoke(main, ["--list-envs"])
        assert result.exit_code == 0
        assert "No environments defined." in result.output

    def test_lists_with_masking(self, runner, tmp_project):
        _write_config(
            tmp_project,
            {
                "defaults": {"environment": "dev"},
                "environments": {
                    "dev": {
                        "api_url": "http://localhost:8000",
                        "token": {"value": "dev-token", "secret": True},
                    },
                    "prod": {"api_url": "https://api.example.com"},
                },
            },
        )
        result = runner.invoke(main, ["--list-envs"])
        assert result.exit_code == 0
        assert "2 environment(s):" in result.output
        assert "  dev (default)" in result.output
        assert "    api_url = http://localhost:8000" in result.output
        assert "    token = ****" in result.output
        assert "dev-token" not in result.output
        assert "  prod\n" in result.output
