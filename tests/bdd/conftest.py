"""
Shared fixtures and step definitions for BDD tests.

- store: autouse, points the CLI at a throwaway SQLite file; every command
  invocation gets a freshly built App on that file
- runner, context: available to all scenario files in this directory
- no_logging: autouse, prevents log file creation during tests
- shared steps: empty store, submitting the form, 'the output contains',
  'the command fails'
"""

from types import SimpleNamespace
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from pytest_bdd import given, then, when, parsers

from leadcapture.cli.main import cli
from leadcapture.engine.app import build_app


@pytest.fixture(autouse=True)
def store(tmp_path):
    cfg = SimpleNamespace(
        ENGINE='sqlite', DATABASE_URL=None, DATABASE_PATH=str(tmp_path / 'bdd.db'),
        TIMEZONE='America/Sao_Paulo', DB_POOL_MIN=1, DB_POOL_MAX=2, DB_POOL_TIMEOUT=5.0,
        MAX_PAGE_SIZE=200, VALID_EVENT_DAYS=('17', '18'),
        WEBHOOK_URL='', WEBHOOK_TIMEOUT_SECONDS=2.0, DELIVERY_MAX_ATTEMPTS=3,
    )

    def fresh_app(_config=None, ensure=True):
        return build_app(cfg, ensure=ensure)

    with patch("leadcapture.cli.main.build_app", side_effect=fresh_app):
        yield cfg


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def context():
    """Mutable dict shared between Given/When/Then steps within a scenario."""
    return {}


@pytest.fixture(autouse=True)
def no_logging():
    with patch("leadcapture.cli.main.configure_logging"):
        yield


@pytest.fixture
def submit_form(runner):
    """Invoke `leads submit` with a valid form; override email, age or extra options."""
    def _submit(email, idade=28, extra=()):
        return runner.invoke(cli, [
            "leads", "submit", "--nome", "Ana Souza", "--email", email,
            "--telefone", "11999998888", "--idade", str(idade), *extra,
        ])
    return _submit


@given("the lead store is empty")
def empty_store(runner):
    result = runner.invoke(cli, ["init-db"])
    assert result.exit_code == 0, result.output


@given(parsers.parse('a lead exists for "{email}"'))
def lead_exists(submit_form, email):
    result = submit_form(email)
    assert result.exit_code == 0, result.output


@when(parsers.parse('a visitor submits the form as "{email}"'))
def visitor_submits(submit_form, context, email):
    context["result"] = submit_form(email)


@then(parsers.parse('the output contains "{text}"'))
def output_contains(context, text):
    assert text in context["result"].output, (
        f"Expected {text!r} in output:\n{context['result'].output}"
    )


@then("the command fails")
def command_fails(context):
    assert context["result"].exit_code != 0, context["result"].output
