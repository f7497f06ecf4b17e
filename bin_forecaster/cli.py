"""
Bin Fill Forecaster — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, CSV import, refresh pass, priority query).
  5. Report result to stdout.

Install and run::

    pip install -e .
    bin-forecaster --help
    bin-forecaster init-db
    bin-forecaster validate-config
    bin-forecaster import-collections --bins bins.csv --collections collections.csv
    bin-forecaster refresh-predictions
    bin-forecaster show-priorities --risk high --within-days 3
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="bin-forecaster",
    help="Bin fill-level forecasting — prediction refresh and collection priorities.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from bin_forecaster.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from bin_forecaster.utils.logging import configure_logging
    configure_logging(config.logging)


def _fmt_days(days: Optional[int]) -> str:
    return "n/a" if days is None else str(days)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times — all DDL uses IF NOT EXISTS.
    """
    from bin_forecaster.db.connection import connect_from_config
    from bin_forecaster.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with connect_from_config(config.database, target_path) as conn:
        apply_schema(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)
    model = config.prediction_model
    scoring = config.scoring

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:    {config.database.db_path}")
    typer.echo(f"  Model endpoint:   {model.base_url.rstrip('/')}{model.predict_path}")
    typer.echo(f"  Concurrency:      {model.max_concurrency}")
    typer.echo(f"  Deadline:         {model.refresh_deadline_seconds or 'none'}")
    typer.echo(f"  Threshold:        {scoring.threshold_pct:g}%")
    typer.echo(f"  Fill baseline:    {scoring.fill_baseline}")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("import-collections")
def import_collections(
    bins_file: Optional[str] = typer.Option(
        None, "--bins", help="CSV of bins (bin_id, region, bin_status)."
    ),
    collections_file: Optional[str] = typer.Option(
        None, "--collections", help="CSV of collection events (bin_id, collected_at, fill_level)."
    ),
    stops_file: Optional[str] = typer.Option(
        None, "--route-stops", help="CSV of planned stops (bin_id, planned_collection_at, route_id)."
    ),
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config."
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file."
    ),
) -> None:
    """Import bins, collection events and route stops from CSV files.

    Bins are upserted by bin_id; collection events and route stops are
    appended. Every file is validated before anything is written.
    """
    from bin_forecaster.db.connection import connect_from_config
    from bin_forecaster.db.schema import apply_schema
    from bin_forecaster.ingestion.collection_csv import import_collection_data

    if not (bins_file or collections_file or stops_file):
        typer.echo(
            "[ERROR] Nothing to import. Pass --bins, --collections and/or --route-stops.",
            err=True,
        )
        raise typer.Exit(code=1)

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        with connect_from_config(config.database, db_path) as conn:
            apply_schema(conn)
            counts = import_collection_data(
                conn,
                bins_csv=Path(bins_file) if bins_file else None,
                collections_csv=Path(collections_file) if collections_file else None,
                route_stops_csv=Path(stops_file) if stops_file else None,
            )
    except (FileNotFoundError, ValueError) as exc:
        typer.echo(f"[ERROR] CSV import failed:\n{exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"  Bins upserted:        {counts.bins}")
    typer.echo(f"  Collections imported: {counts.collections}")
    typer.echo(f"  Route stops imported: {counts.route_stops}")
    typer.echo("[OK] Collection data imported.")


@app.command("refresh-predictions")
def refresh_predictions_cmd(
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config."
    ),
    model_url: Optional[str] = typer.Option(
        None, "--model-url", help="Override prediction model base URL."
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file."
    ),
) -> None:
    """Request new growth predictions for every bin that started a new cycle.

    Safe to re-run: bins whose prediction is newer than their last collection
    are skipped. Per-bin model failures are logged and do not stop the pass.
    Exits with code 1 only if the database itself fails.
    """
    from bin_forecaster.errors import StoreUnavailable
    from bin_forecaster.pipeline.refresh import BinRefreshState, RefreshPredictionsStage

    config = _load_config_or_exit(config_path)
    if model_url:
        config = config.model_copy(
            update={
                "prediction_model": config.prediction_model.model_copy(
                    update={"base_url": model_url}
                )
            }
        )
    _configure_logging(config)

    stage = RefreshPredictionsStage(config=config, db_path=db_path)
    try:
        run = stage.run()
    except StoreUnavailable as exc:
        typer.echo(f"[ERROR] Refresh aborted, store unavailable: {exc}", err=True)
        raise typer.Exit(code=1)

    result = stage.last_result
    typer.echo(f"  Run:       {run.run_slug}")
    typer.echo(f"  Refreshed: {run.rows_processed}")
    if result is not None:
        typer.echo(f"  Skipped:   {result.skipped_count}")
        typer.echo(f"  Failed:    {result.failed_count}")
        for bin_id in result.bin_ids_in(BinRefreshState.FAILED):
            outcome = result.outcomes[bin_id]
            typer.echo(f"    bin {bin_id}: {outcome.reason}")
    typer.echo("[OK] Refresh complete.")


@app.command("show-priorities")
def show_priorities(
    risk: Optional[str] = typer.Option(
        None, "--risk", help="Only show bins at this risk level (high, medium, low)."
    ),
    within_days: Optional[int] = typer.Option(
        None, "--within-days", help="Only show bins reaching the threshold within N days."
    ),
    sort: str = typer.Option(
        "days_to_threshold",
        "--sort",
        help="Sort key: days_to_threshold, estimated_fill, growth.",
    ),
    descending: bool = typer.Option(
        False, "--desc", help="Sort descending."
    ),
    as_of: Optional[str] = typer.Option(
        None, "--as-of", help="Evaluation time (ISO 8601). Defaults to now (UTC)."
    ),
    as_json: bool = typer.Option(
        False, "--json", help="Emit rows and summary as JSON."
    ),
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config."
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file."
    ),
) -> None:
    """Rank bins by how soon they reach the fill threshold."""
    from dataclasses import asdict

    from bin_forecaster.db.connection import connect_from_config
    from bin_forecaster.db.schema import apply_schema
    from bin_forecaster.scoring.ranker import (
        SortKey,
        filter_priorities,
        load_priority_report,
        sort_priorities,
    )
    from bin_forecaster.scoring.scorer import RiskLevel

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        risk_level = RiskLevel(risk.lower()) if risk else None
        sort_key = SortKey(sort)
        as_of_dt = datetime.fromisoformat(as_of.replace("Z", "+00:00")) if as_of else None
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    with connect_from_config(config.database, db_path) as conn:
        apply_schema(conn)
        priorities, summary = load_priority_report(conn, config.scoring, as_of_dt)

    rows = sort_priorities(
        filter_priorities(priorities, risk=risk_level, within_days=within_days),
        key=sort_key,
        descending=descending,
    )

    if as_json:
        typer.echo(json.dumps(
            {"summary": asdict(summary), "bins": [p.to_dict() for p in rows]},
            indent=2,
        ))
        return

    typer.echo(
        f"Bins: {summary.total_bins} | high priority: {summary.high_priority_bins} | "
        f"avg growth: {summary.avg_predicted_growth:.2f}%/day | "
        f"new cycles: {summary.new_cycle_detected_count} | "
        f"missing predictions: {summary.missing_prediction_count} | "
        f"high risk unscheduled: {summary.high_risk_unscheduled_count}"
    )
    typer.echo("")
    header = f"{'BIN':>6}  {'REGION':<14} {'FILL%':>6} {'GROWTH':>7} {'DAYS':>5}  {'RISK':<7} {'PLAN':<14} FLAGS"
    typer.echo(header)
    typer.echo("-" * len(header))
    for p in rows:
        flags = ",".join(
            f for f, on in (("auto", p.auto_selected), ("stale", p.is_stale)) if on
        )
        typer.echo(
            f"{p.bin_id:>6}  {(p.region or '-')[:14]:<14} {p.estimated_fill:>6.1f} "
            f"{p.predicted_growth:>7.2f} {_fmt_days(p.days_to_threshold):>5}  "
            f"{p.risk_level.value:<7} {p.planning_status.value:<14} {flags}"
        )
    if not rows:
        typer.echo("  (no bins match)")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
