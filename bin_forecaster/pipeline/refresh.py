"""
Prediction refresh — fans out one independent task per bin.

Per-bin lifecycle for one pass::

    eligible ─► feature_extracted ─► predicted ─► persisted
        │               │                 │
        ▼               ▼                 ▼
     skipped         failed            failed

  skipped : the gate says the prediction is current (``up_to_date``), or the
            history cannot describe a cycle (``insufficient_history``,
            ``timestamp_missing``).
  failed  : the model call failed (``prediction_unavailable``,
            ``prediction_malformed``), the append failed
            (``persistence_failure``), or the pass deadline / cancel signal
            fired while the bin was in flight (``cancelled``).

Each task returns a ``BinRefreshOutcome`` instead of raising, so one bin's
failure never stops another. Outbound calls are bounded by an
``asyncio.Semaphore`` (``prediction_model.max_concurrency``). Appends are
synchronous on the event-loop thread; only the HTTP call suspends.

After every task has finished (or been cancelled) the writer commits once.
Appends that completed before a deadline are still committed. A failed
commit raises ``StoreUnavailable`` out of the pass.

Entry points:
  ``RefreshOrchestrator(conn, client, ...).run()``  async, used directly in tests
  ``RefreshPredictionsStage(config).run()``         audited stage → ``RunMetadata``
  ``refresh_predictions(config)``                   → refreshed bin count
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

import httpx

from bin_forecaster.config import AppConfig
from bin_forecaster.db.connection import connect_from_config
from bin_forecaster.db.history import load_history_snapshot
from bin_forecaster.db.schema import apply_schema
from bin_forecaster.errors import (
    PersistenceFailure,
    PredictionError,
    RefreshSkipped,
    StoreUnavailable,
)
from bin_forecaster.features.cycle_features import extract_cycle_features
from bin_forecaster.ingestion.prediction_client import PredictionClient, build_http_client
from bin_forecaster.models.collection import CollectionEvent
from bin_forecaster.models.meta import RunMetadata
from bin_forecaster.models.prediction import FillLevelPrediction
from bin_forecaster.pipeline.base import PipelineStage
from bin_forecaster.pipeline.refresh_gate import needs_refresh
from bin_forecaster.pipeline.writer import PredictionWriter
from bin_forecaster.utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class BinRefreshState(str, Enum):
    ELIGIBLE = "eligible"
    FEATURE_EXTRACTED = "feature_extracted"
    PREDICTED = "predicted"
    PERSISTED = "persisted"
    SKIPPED = "skipped"
    FAILED = "failed"


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BinRefreshOutcome:
    """Terminal outcome of one bin in one refresh pass.

    Attributes:
        bin_id:     Bin processed.
        state:      ``persisted``, ``skipped`` or ``failed``.
        reason:     Machine-readable skip/failure reason (``None`` on success).
        failed_at:  Last state reached before a failure.
        prediction: Row appended for the bin (``persisted`` only).
        error:      Human-readable error message, if any.
    """

    bin_id:     int
    state:      BinRefreshState
    reason:     Optional[str]                 = None
    failed_at:  Optional[BinRefreshState]     = None
    prediction: Optional[FillLevelPrediction] = None
    error:      Optional[str]                 = None

    @property
    def refreshed(self) -> bool:
        return self.state is BinRefreshState.PERSISTED


@dataclass
class RefreshResult:
    """Aggregate of one refresh pass, keyed by bin id.

    ``persisted_count`` is the authoritative "bins refreshed" figure.
    """

    outcomes: dict[int, BinRefreshOutcome] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def persisted_count(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.refreshed)

    @property
    def skipped_count(self) -> int:
        return len(self.bin_ids_in(BinRefreshState.SKIPPED))

    @property
    def failed_count(self) -> int:
        return len(self.bin_ids_in(BinRefreshState.FAILED))

    def bin_ids_in(self, state: BinRefreshState) -> list[int]:
        return sorted(b for b, o in self.outcomes.items() if o.state is state)


# ── Orchestrator ──────────────────────────────────────────────────────────────

class RefreshOrchestrator:
    """Runs one refresh pass over every bin in the history store.

    Args:
        conn:             Open connection with the schema applied.
        client:           Prediction client (owns nothing; caller closes HTTP).
        max_concurrency:  Upper bound on in-flight model calls.
        deadline_seconds: Abandon in-flight bins after this long (``None`` = no limit).
        run_id:           ``run_metadata.run_id`` to tag new predictions with.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        client: PredictionClient,
        max_concurrency: int = 8,
        deadline_seconds: Optional[float] = None,
        run_id: Optional[int] = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}.")
        self.conn = conn
        self.client = client
        self.max_concurrency = max_concurrency
        self.deadline_seconds = deadline_seconds
        self.run_id = run_id

    async def run(self, cancel_event: Optional[asyncio.Event] = None) -> RefreshResult:
        """Refresh every bin that needs it and commit the new predictions.

        Args:
            cancel_event: Optional signal; when set, bins still in flight are
                cancelled and reported as failed.

        Returns:
            ``RefreshResult`` with one outcome per bin that has history.

        Raises:
            StoreUnavailable: Reading history or the final commit failed.
        """
        try:
            snapshot = load_history_snapshot(self.conn)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot read collection history: {exc}") from exc
        writer = PredictionWriter(self.conn, run_id=self.run_id)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        tasks: dict[int, asyncio.Task[BinRefreshOutcome]] = {
            bin_id: asyncio.create_task(
                self._refresh_bin(
                    bin_id,
                    snapshot.events_by_bin[bin_id],
                    snapshot.latest_prediction(bin_id),
                    semaphore,
                    writer,
                ),
                name=f"refresh-bin-{bin_id}",
            )
            for bin_id in snapshot.bin_ids
        }
        logger.info(
            "Refresh pass: %d bin(s) with history | concurrency=%d | deadline=%s",
            len(tasks), self.max_concurrency, self.deadline_seconds,
        )

        result = RefreshResult()
        if tasks:
            result.cancelled = await self._await_tasks(tasks, cancel_event)

        for bin_id, task in tasks.items():
            if task.cancelled():
                result.outcomes[bin_id] = BinRefreshOutcome(
                    bin_id=bin_id,
                    state=BinRefreshState.FAILED,
                    reason="cancelled",
                    error="Refresh abandoned before completion.",
                )
            else:
                result.outcomes[bin_id] = task.result()

        committed = writer.commit()
        logger.info(
            "Refresh pass finished | persisted=%d | skipped=%d | failed=%d",
            committed, result.skipped_count, result.failed_count,
        )
        return result

    async def _await_tasks(
        self,
        tasks: dict[int, asyncio.Task[BinRefreshOutcome]],
        cancel_event: Optional[asyncio.Event],
    ) -> bool:
        """Wait for all bin tasks; cancel the rest on deadline or signal.

        Returns:
            ``True`` if any task had to be cancelled.
        """
        loop = asyncio.get_running_loop()
        deadline = (
            loop.time() + self.deadline_seconds
            if self.deadline_seconds is not None
            else None
        )
        signal_waiter = (
            asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None
        )
        pending: set[asyncio.Task] = set(tasks.values())

        try:
            while pending:
                watch = (pending | {signal_waiter}) if signal_waiter else pending
                timeout = None if deadline is None else max(deadline - loop.time(), 0.0)
                done, _ = await asyncio.wait(
                    watch, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
                if signal_waiter is not None and signal_waiter in done:
                    logger.warning("Refresh cancelled with %d bin(s) in flight.", len(pending - done))
                    pending -= done
                    break
                if not done:
                    logger.warning(
                        "Refresh deadline of %.1fs reached with %d bin(s) in flight.",
                        self.deadline_seconds, len(pending),
                    )
                    break
                pending -= done
        finally:
            if signal_waiter is not None and not signal_waiter.done():
                signal_waiter.cancel()

        if not pending:
            return False

        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        return any(task.cancelled() for task in pending)

    async def _refresh_bin(
        self,
        bin_id: int,
        events: Sequence[CollectionEvent],
        latest_prediction: Optional[FillLevelPrediction],
        semaphore: asyncio.Semaphore,
        writer: PredictionWriter,
    ) -> BinRefreshOutcome:
        """Drive one bin from ``eligible`` to a terminal state."""
        state = BinRefreshState.ELIGIBLE
        try:
            if not needs_refresh(latest_prediction, events[0]):
                logger.debug("Bin %d: prediction is current; skipping.", bin_id)
                return BinRefreshOutcome(
                    bin_id=bin_id, state=BinRefreshState.SKIPPED, reason="up_to_date"
                )

            features = extract_cycle_features(events)
            state = BinRefreshState.FEATURE_EXTRACTED

            async with semaphore:
                growth = await self.client.predict(
                    bin_id,
                    fill_pct=features.fill_at_last_collection,
                    cycle_duration_days=features.cycle_duration_days,
                    cycle_start_month=features.cycle_start_month,
                )
            state = BinRefreshState.PREDICTED

            # Never stamp a prediction before the collection that opened its cycle
            generated_at = max(utcnow(), ensure_utc(features.last_collected_at))
            prediction = writer.append(
                bin_id, growth.avg_daily_growth, growth.model_version,
                generated_at=generated_at,
            )
            logger.debug(
                "Bin %d: appended growth=%.4f (%s).",
                bin_id, growth.avg_daily_growth, growth.model_version,
            )
            return BinRefreshOutcome(
                bin_id=bin_id, state=BinRefreshState.PERSISTED, prediction=prediction
            )

        except RefreshSkipped as exc:
            logger.info("Bin %d skipped (%s): %s", bin_id, exc.reason, exc,
                        extra={"bin_id": bin_id})
            return BinRefreshOutcome(
                bin_id=bin_id, state=BinRefreshState.SKIPPED,
                reason=exc.reason, error=str(exc),
            )

        except (PredictionError, PersistenceFailure) as exc:
            logger.warning("Bin %d refresh failed at %s (%s): %s",
                           bin_id, state.value, exc.reason, exc, extra={"bin_id": bin_id})
            return BinRefreshOutcome(
                bin_id=bin_id, state=BinRefreshState.FAILED,
                reason=exc.reason, failed_at=state, error=str(exc),
            )

        except Exception as exc:
            logger.exception("Bin %d refresh raised unexpectedly at %s.", bin_id, state.value,
                             extra={"bin_id": bin_id})
            return BinRefreshOutcome(
                bin_id=bin_id, state=BinRefreshState.FAILED,
                reason="unexpected_error", failed_at=state, error=str(exc),
            )


# ── Stage ─────────────────────────────────────────────────────────────────────

class RefreshPredictionsStage(PipelineStage):
    """Audited refresh pass: ``run()`` returns ``RunMetadata`` with
    ``rows_processed`` = bins refreshed.

    ``run()`` accepts two optional keyword arguments:
      http_client  : an ``httpx.AsyncClient`` to use instead of building one
                     from ``config.prediction_model`` (not closed by the stage).
      cancel_event : ``asyncio.Event`` that aborts in-flight bins when set.

    The per-bin breakdown of the most recent run is kept on ``last_result``.
    """

    stage_name = "refresh_predictions"

    def __init__(self, config: AppConfig, db_path: str | None = None) -> None:
        super().__init__(config, db_path)
        self.last_result: Optional[RefreshResult] = None

    def _execute(
        self,
        run: RunMetadata,
        http_client: Optional[httpx.AsyncClient] = None,
        cancel_event: Optional[asyncio.Event] = None,
        **kwargs,
    ) -> int:
        try:
            with connect_from_config(self.config.database, self.db_path) as conn:
                apply_schema(conn)
                result = asyncio.run(
                    self._refresh(conn, run.run_id, http_client, cancel_event)
                )
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Bin store at {self.db_path} failed: {exc}") from exc
        self.last_result = result
        return result.persisted_count

    async def _refresh(
        self,
        conn: sqlite3.Connection,
        run_id: Optional[int],
        http_client: Optional[httpx.AsyncClient],
        cancel_event: Optional[asyncio.Event],
    ) -> RefreshResult:
        if http_client is not None:
            return await self._orchestrator(conn, run_id, http_client).run(cancel_event)
        async with build_http_client(self.config.prediction_model) as owned_client:
            return await self._orchestrator(conn, run_id, owned_client).run(cancel_event)

    def _orchestrator(
        self,
        conn: sqlite3.Connection,
        run_id: Optional[int],
        http_client: httpx.AsyncClient,
    ) -> RefreshOrchestrator:
        model_cfg = self.config.prediction_model
        return RefreshOrchestrator(
            conn,
            PredictionClient.from_config(http_client, model_cfg),
            max_concurrency=model_cfg.max_concurrency,
            deadline_seconds=model_cfg.refresh_deadline_seconds,
            run_id=run_id,
        )


def refresh_predictions(
    config: AppConfig,
    db_path: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> int:
    """Run one audited refresh pass and return the number of bins refreshed.

    Raises:
        StoreUnavailable: The store failed while committing the pass.
    """
    run = RefreshPredictionsStage(config, db_path=db_path).run(
        http_client=http_client, cancel_event=cancel_event
    )
    return run.rows_processed
