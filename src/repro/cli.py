from __future__ import annotations

import logging
from typing import Optional

import pandas as pd
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from repro.core.config import PipelineConfig
from repro.core.errors import ReproError
from repro.model.fit import fit
from repro.pipeline import run_pipeline
from repro.prepare.clean import prepare
from repro.viz.figures import generate_figures


app = typer.Typer(add_completion=False, help="Reproducible analysis pipeline CLI")
console = Console()


def _load_cfg(config: Optional[str]) -> PipelineConfig:
    return PipelineConfig.load(config)


def _print_dataframe(df: pd.DataFrame, title: str, max_rows: int = 20) -> None:
    tbl = Table(title=title, show_lines=False)
    for c in df.columns:
        tbl.add_column(str(c))
    for _, row in df.head(max_rows).iterrows():
        tbl.add_row(*[f"{row[c]:.4g}" if isinstance(row[c], float) else str(row[c]) for c in df.columns])
    console.print(tbl)
    if len(df) > max_rows:
        console.print(f"(showing first {max_rows} of {len(df)} rows)")


def _fail(stage: str, err: ReproError) -> None:
    console.print(f"[red]✗ {stage} failed:[/red] {err}")
    raise typer.Exit(code=1) from err


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
):
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    logging.captureWarnings(True)


@app.command("prepare")
def prepare_cmd(
    config: Optional[str] = typer.Option(None, "--config", help="Path to pipeline YAML config"),
    data: Optional[str] = typer.Option(None, "--data", help="Raw CSV/Parquet (overrides paths.raw_data)"),
    output: Optional[str] = typer.Option(None, "--output", help="Canonical CSV path"),
):
    cfg = _load_cfg(config)
    try:
        res = prepare(data or cfg.paths.raw_data, cfg, out_path=output)
    except ReproError as e:
        _fail("prepare", e)
    console.print(
        f"[green]✓[/green] Wrote {len(res.data)} rows x {res.data.shape[1]} columns to {res.path} "
        f"({res.missing_count} missing values)"
    )


@app.command("fit")
def fit_cmd(
    config: Optional[str] = typer.Option(None, "--config"),
    data: Optional[str] = typer.Option(None, "--data", help="Canonical CSV (default from config)"),
    target: Optional[str] = typer.Option(None, "--target"),
    predictor: Optional[str] = typer.Option(None, "--predictor"),
    out_dir: Optional[str] = typer.Option(None, "--out-dir"),
):
    cfg = _load_cfg(config)
    try:
        res = fit(
            data or cfg.paths.canonical_path(),
            cfg,
            target=target,
            predictor=predictor,
            out_dir=out_dir,
        )
    except ReproError as e:
        _fail("fit", e)

    console.print(f"Formula: {res.model.formula}")
    _print_dataframe(res.coefficients, title="Coefficients")
    _print_dataframe(res.metrics, title="Fit metrics")
    for name, path in res.paths.items():
        console.print(f"[green]✓[/green] {name}: {path}")


@app.command("figures")
def figures_cmd(
    config: Optional[str] = typer.Option(None, "--config"),
    data: Optional[str] = typer.Option(None, "--data", help="Canonical CSV (default from config)"),
    diagnostics: Optional[str] = typer.Option(None, "--diagnostics", help="Diagnostics CSV (default from config)"),
    out_dir: Optional[str] = typer.Option(None, "--out-dir"),
):
    cfg = _load_cfg(config)
    try:
        artifacts = generate_figures(
            data or cfg.paths.canonical_path(),
            diagnostics or cfg.paths.diagnostics_path(),
            cfg,
            out_dir=out_dir,
        )
    except ReproError as e:
        _fail("figures", e)
    for a in artifacts:
        console.print(f"[green]✓[/green] {a.path} ({a.path.stat().st_size / 1024:.1f} KB) - {a.description}")


@app.command("run")
def run_cmd(
    config: Optional[str] = typer.Option(None, "--config"),
):
    """Run prepare -> fit -> figures and report each stage."""

    cfg = _load_cfg(config)
    report = run_pipeline(cfg)

    table = Table(title="Pipeline")
    table.add_column("stage")
    table.add_column("status")
    table.add_column("details")
    for s in report.stages:
        table.add_row(s.name, "[green]ok[/green]" if s.ok else "[red]failed[/red]", s.message)
    console.print(table)

    if not report.ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
