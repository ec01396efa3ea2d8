from __future__ import annotations

import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv

from .workflows.checker import CheckConfig, CheckReport, run_check
from .workflows.doctor import build_doctor_report, format_doctor_report

load_dotenv(override=False)

app = typer.Typer(add_help_option=True, no_args_is_help=True, help="Check @ExternalDocSource annotations.")

EXIT_OK = 0
EXIT_CHANGED = 1
EXIT_FILE_ERRORS = 2
EXIT_FATAL = 3


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _render_report(report: CheckReport) -> str:
    lines: List[str] = []
    for record in report.records:
        if record.matches:
            continue
        state = "changed" if record.success else "error"
        location = f"{record.path}:{record.line}" if record.line else record.path
        lines.append(f"{state:8} {location} {record.source}")
        lines.append(f"         saved:   {record.saved_hash or '(none)'}")
        lines.append(f"         current: {record.current_hash}")
    for error in report.errors:
        lines.append(f"invalid  {error.get('path')}: {error.get('error')}")
    counts = report.counts()
    lines.append(
        "{annotations} annotation(s) in {files} file(s): {matched} matched, {changed} changed, "
        "{failed} failed, {file_errors} file error(s), {files_updated} file(s) updated".format(**counts)
    )
    return "\n".join(lines)


def _exit_code(report: CheckReport, soft_fail: bool) -> int:
    if report.errors:
        return EXIT_FILE_ERRORS
    if report.mismatches and not soft_fail:
        return EXIT_CHANGED
    return EXIT_OK


@app.command("check")
def check(
    patterns: List[str] = typer.Argument(..., help="Glob patterns of source files to scan ('**' is recursive)."),
    no_update: bool = typer.Option(False, "--no-update", help="Report only; do not rewrite annotations."),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Write filtered snapshots here, named by fingerprint."),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=0.1, help="Per-fetch timeout in seconds."),
    json_out: bool = typer.Option(False, "--json", help="Print the report as JSON to stdout."),
    soft_fail: bool = typer.Option(False, "--soft-fail", help="Exit 0 even if annotations changed."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Re-fetch annotated URLs and compare their fingerprints."""

    _configure_logging(verbose)
    config = CheckConfig.from_env()
    if no_update:
        config.update_files = False
    if cache_dir is not None:
        config.snapshot_dir = cache_dir
    if timeout is not None:
        config.fetch = replace(config.fetch, timeout=timeout)
    try:
        report = run_check(patterns, config)
    except Exception as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=EXIT_FATAL)
    if json_out:
        sys.stdout.write(json.dumps(report.to_dict(), ensure_ascii=False) + "\n")
    else:
        typer.echo(_render_report(report))
    raise typer.Exit(code=_exit_code(report, soft_fail))


@app.command("doctor")
def doctor_cmd(
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Snapshot directory to check."),
) -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report(cache_dir=cache_dir)
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
