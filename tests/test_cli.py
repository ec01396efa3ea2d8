import json

from typer.testing import CliRunner

from docwatch import cli
from docwatch.workflows.checker import CheckReport
from docwatch.workflows.reconcile import ReconciliationRecord

runner = CliRunner()
URL = "https://docs.example.com/api"


def _record(**overrides):
    values = dict(
        path="src/a.ts",
        line=4,
        base_name="a.ts",
        source=URL,
        saved_hash="abc123",
        current_hash="abc123",
        matches=True,
        success=True,
    )
    values.update(overrides)
    return ReconciliationRecord(**values)


def _patch_run_check(monkeypatch, report):
    seen = {}

    def fake_run_check(patterns, config):
        seen["patterns"] = list(patterns)
        seen["config"] = config
        return report

    monkeypatch.setattr(cli, "run_check", fake_run_check)
    return seen


def test_check_all_matching_exits_zero(monkeypatch):
    _patch_run_check(monkeypatch, CheckReport(records=[_record()], files_scanned=1, fetches=1))

    result = runner.invoke(cli.app, ["check", "src/**/*.ts"])

    assert result.exit_code == 0
    assert "1 annotation(s) in 1 file(s): 1 matched" in result.output


def test_check_changed_exits_one_unless_soft_fail(monkeypatch):
    changed = _record(current_hash="def456", matches=False)
    _patch_run_check(monkeypatch, CheckReport(records=[changed], files_scanned=1))

    result = runner.invoke(cli.app, ["check", "src/**/*.ts"])
    assert result.exit_code == 1
    assert "changed  src/a.ts:4 " + URL in result.output
    assert "current: def456" in result.output

    soft = runner.invoke(cli.app, ["check", "src/**/*.ts", "--soft-fail"])
    assert soft.exit_code == 0


def test_check_file_errors_exit_two(monkeypatch):
    report = CheckReport(errors=[{"path": "bad.ts", "error": "bad.ts:1: unterminated"}], files_scanned=1)
    _patch_run_check(monkeypatch, report)

    result = runner.invoke(cli.app, ["check", "*.ts", "--soft-fail"])

    assert result.exit_code == 2
    assert "invalid  bad.ts" in result.output


def test_check_fatal_error_exits_three(monkeypatch):
    def exploding(patterns, config):
        raise RuntimeError("event loop exploded")

    monkeypatch.setattr(cli, "run_check", exploding)

    result = runner.invoke(cli.app, ["check", "*.ts"])

    assert result.exit_code == 3


def test_check_json_output(monkeypatch):
    failed = _record(current_hash="BAD URL: Request failed with status code 404", matches=False, success=False)
    _patch_run_check(monkeypatch, CheckReport(records=[failed], files_scanned=1, fetches=1))

    result = runner.invoke(cli.app, ["check", "*.ts", "--json"])

    payload = json.loads(result.stdout)
    assert result.exit_code == 1
    assert payload["records"][0]["success"] is False
    assert payload["records"][0]["current_hash"].startswith("BAD URL: ")
    assert payload["counts"]["failed"] == 1


def test_check_options_reach_config(monkeypatch, tmp_path):
    monkeypatch.delenv("DOCWATCH_UPDATE_FILES", raising=False)
    seen = _patch_run_check(monkeypatch, CheckReport())

    result = runner.invoke(
        cli.app,
        ["check", "a/*.ts", "b/**/*.py", "--no-update", "--cache-dir", str(tmp_path), "--timeout", "3"],
    )

    assert result.exit_code == 0
    assert seen["patterns"] == ["a/*.ts", "b/**/*.py"]
    config = seen["config"]
    assert config.update_files is False
    assert config.snapshot_dir == tmp_path
    assert config.fetch.timeout == 3.0


def test_doctor_command_prints_report(monkeypatch):
    monkeypatch.delenv("DOCWATCH_CACHE_DIR", raising=False)

    result = runner.invoke(cli.app, ["doctor"])

    assert "docwatch doctor" in result.output
    assert "filters" in result.output
