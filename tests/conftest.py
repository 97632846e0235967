"""Shared fixtures for lazycurl tests."""

import os
import stat

import pytest
from click.testing import CliRunner

from lazycurl import core
from lazycurl.executor import ExecutionResult
from lazycurl.models import Environment, Request


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def global_lazycurl_dir(tmp_path, monkeypatch):
    """Override the global ~/.lazycurl directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".lazycurl"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    return fake_global


@pytest.fixture
def tmp_project(tmp_path, global_lazycurl_dir):
    """Create a temporary project directory and cd into it."""
    project = tmp_path / "project"
    project.mkdir()
    original = os.getcwd()
    os.chdir(project)
    yield project
    os.chdir(original)


@pytest.fixture
def fake_curl(tmp_path, monkeypatch):
    """Install a shell script named curl at the front of PATH.

    Usage: fake_curl('printf "hello"; exit 0')
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def _install(body: str):
        script = bin_dir / "curl"
        script.write_text("#!/bin/sh\n" + body + "\n")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
        return script

    return _install


@pytest.fixture
def example_request():
    return Request(url="https://example.com")


@pytest.fixture
def empty_env():
    return Environment("test")


def make_execution_result(
    exit_code=0,
    stdout=b"",
    stderr=b"",
    duration_ns=42_000_000,
    error_message=None,
    command="curl https://example.com",
):
    """Factory for ExecutionResult objects."""
    return ExecutionResult(
        command=command,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        duration_ns=duration_ns,
        error_message=error_message,
    )
