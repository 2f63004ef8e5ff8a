from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterable

from sqlalchemy import Float, case, cast, create_engine, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from selfheal.core.exceptions import StoreInitializationError, StoreNotReadyError
from selfheal.core.metadata import HealingAttempt, SelectorCandidate, SelectorRecord, SelectorStrategy
from selfheal.storage.models import AlternativeSelectorRow, Base, HealingHistoryRow, SelectorRow
from selfheal.utils.scoring import update_success_rate

log = logging.getLogger(__name__)

IN_MEMORY = ":memory:"

_succeeded = case((HealingHistoryRow.success, 1), else_=0)


@dataclass(slots=True)
class HealingStats:
    total_attempts: int = 0
    successful_heals: int = 0
    failed_heals: int = 0
    success_rate: float = 0.0


@dataclass(slots=True)
class StrategyUsage:
    strategy: str
    count: int
    successful: int
    success_rate: float


@dataclass(slots=True)
class ConfidenceDistribution:
    high: int = 0
    medium: int = 0
    low: int = 0


@dataclass(slots=True)
class SelectorUsage:
    selector: str
    success_rate: float
    usage_count: int


@dataclass(slots=True)
class SelectorFailure:
    selector: str
    failure_count: int
    last_attempt: float


@dataclass(slots=True)
class TopSelectors:
    successful: list[SelectorUsage] = field(default_factory=list)
    failed: list[SelectorFailure] = field(default_factory=list)


@dataclass(slots=True)
class PageStats:
    page_url: str
    attempts: int
    success_rate: float


@dataclass(slots=True)
class DetailedAnalysis:
    first_attempt: datetime | None
    last_attempt: datetime | None
    confidence_distribution: ConfidenceDistribution
    by_page: list[PageStats]


class SelectorRepository:
    """SQLite-backed store for selectors, generated alternatives and healing history.

    The store is single-process and single-writer: every mutating call commits
    before returning, and nothing coordinates writers across processes.
    Initialization runs in a worker thread; until it finishes every operation
    raises ``StoreNotReadyError``.
    """

    def __init__(self, path: str | Path = "./data/selectors.db") -> None:
        self.path = str(path)
        self._engine: Engine | None = None
        self._sessions: sessionmaker[Session] | None = None
        self._init_task: asyncio.Task[None] | None = None
        self._init_error: BaseException | None = None
        self._generation = 0
        self._lock = threading.Lock()

    @classmethod
    async def open(cls, path: str | Path = "./data/selectors.db") -> SelectorRepository:
        repository = cls(path)
        await repository.wait_ready()
        return repository

    @property
    def ready(self) -> bool:
        return self._sessions is not None

    def start(self) -> asyncio.Task[None]:
        """Schedules background initialization on the running event loop."""

        if self._init_task is None:
            self._init_error = None
            self._init_task = asyncio.get_running_loop().create_task(
                asyncio.to_thread(self._initialize, self._generation)
            )
            self._init_task.add_done_callback(self._on_initialized)
        return self._init_task

    async def wait_ready(self) -> None:
        task = self.start()
        try:
            await task
        except Exception as exc:
            raise StoreInitializationError(f"Selector store could not be initialized at {self.path}") from exc

    def initialize(self) -> None:
        self._initialize(self._generation)

    def _initialize(self, generation: int) -> None:
        if self._sessions is not None:
            return
        engine = self._create_engine()
        with self._lock:
            # superseded by close() or by another initialization
            if generation != self._generation or self._sessions is not None:
                engine.dispose()
                return
            self._engine = engine
            self._sessions = sessionmaker(engine, expire_on_commit=False)
        log.info("Selector store initialized at %s", self.path)

    def _create_engine(self) -> Engine:
        if self.path == IN_MEMORY:
            engine = create_engine(
                "sqlite://",
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                f"sqlite:///{self.path}",
                connect_args={"check_same_thread": False},
            )
        try:
            Base.metadata.create_all(engine)
        except Exception:
            engine.dispose()
            raise
        return engine

    def close(self) -> None:
        with self._lock:
            self._generation += 1
            engine = self._engine
            self._engine = None
            self._sessions = None
            self._init_task = None
            self._init_error = None
        if engine is not None:
            engine.dispose()
            log.info("Selector store closed")

    def _on_initialized(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            if task is self._init_task:
                self._init_task = None
            return
        exc = task.exception()
        if task is not self._init_task:
            return
        if exc is not None:
            self._init_error = exc
            log.error("Failed to initialize selector store at %s: %s", self.path, exc)

    def _session(self) -> Session:
        if self._init_error is not None:
            raise StoreInitializationError(
                f"Selector store could not be initialized at {self.path}"
            ) from self._init_error
        if self._sessions is None:
            raise StoreNotReadyError("Selector store is initializing. Please wait and retry.")
        return self._sessions()

    # Selectors

    def save_selector(self, record: SelectorRecord) -> None:
        with self._session() as session, session.begin():
            row = session.get(SelectorRow, record.id)
            if row is None:
                row = SelectorRow(id=record.id, created_at=record.created_at)
                session.add(row)
            row.original_selector = record.original_locator
            row.strategy = str(record.strategy)
            row.page_url = record.page_url
            row.element_attributes = json.dumps(record.element_attributes, sort_keys=True)
            row.confidence = record.confidence
            row.success_rate = min(1.0, max(0.0, record.success_rate))
            row.usage_count = record.usage_count
            row.last_used = record.last_used
        log.debug("Selector saved: %s", record.id)

    def get_selector(self, selector_id: str) -> SelectorRecord | None:
        with self._session() as session:
            row = session.get(SelectorRow, selector_id)
            if row is None:
                return None
            return SelectorRecord(
                id=row.id,
                original_locator=row.original_selector,
                strategy=SelectorStrategy(row.strategy),
                page_url=row.page_url,
                element_attributes=json.loads(row.element_attributes or "{}"),
                success_rate=row.success_rate,
                confidence=row.confidence,
                usage_count=row.usage_count,
                last_used=row.last_used,
                created_at=row.created_at,
            )

    def update_success_rate(self, selector_id: str, success: bool) -> float | None:
        """Folds one observation into the selector's reliability.

        Returns the new rate, or None when the selector is unknown.
        """

        with self._session() as session, session.begin():
            row = session.get(SelectorRow, selector_id)
            if row is None:
                return None
            row.success_rate = update_success_rate(row.success_rate, success)
            row.usage_count += 1
            row.last_used = time.time()
            new_rate = row.success_rate
        log.debug("Success rate updated for %s: %.1f%%", selector_id, new_rate * 100)
        return new_rate

    # Alternatives

    def save_alternatives(self, selector_id: str, candidates: Iterable[SelectorCandidate]) -> int:
        now = time.time()
        rows = [
            AlternativeSelectorRow(
                selector_id=selector_id,
                alternative_selector=candidate.selector,
                strategy=str(candidate.strategy),
                confidence=candidate.confidence,
                reasoning=candidate.reasoning,
                created_at=now,
            )
            for candidate in candidates
        ]
        with self._session() as session, session.begin():
            session.add_all(rows)
        log.debug("Saved %d alternative selectors for %s", len(rows), selector_id)
        return len(rows)

    def get_alternatives(self, selector_id: str) -> list[SelectorCandidate]:
        stmt = (
            select(AlternativeSelectorRow)
            .where(AlternativeSelectorRow.selector_id == selector_id)
            .order_by(
                AlternativeSelectorRow.confidence.desc(),
                AlternativeSelectorRow.success_count.desc(),
                AlternativeSelectorRow.id.asc(),
            )
        )
        with self._session() as session:
            return [
                SelectorCandidate(
                    selector=row.alternative_selector,
                    strategy=SelectorStrategy(row.strategy),
                    confidence=float(row.confidence),
                    reasoning=row.reasoning,
                )
                for row in session.scalars(stmt)
            ]

    def record_alternative_outcome(self, selector_id: str, locator: str, success: bool) -> None:
        counter = AlternativeSelectorRow.success_count if success else AlternativeSelectorRow.failure_count
        stmt = (
            update(AlternativeSelectorRow)
            .where(
                AlternativeSelectorRow.selector_id == selector_id,
                AlternativeSelectorRow.alternative_selector == locator,
            )
            .values({counter: counter + 1})
        )
        with self._session() as session, session.begin():
            session.execute(stmt)

    # History

    def save_healing_history(self, attempt: HealingAttempt) -> None:
        row = HealingHistoryRow(
            selector_id=attempt.selector_id,
            original_selector=attempt.original_locator,
            healed_selector=attempt.healed_locator,
            strategy=str(attempt.strategy) if attempt.strategy is not None else None,
            confidence=attempt.confidence,
            success=attempt.success,
            attempts=attempt.attempts,
            reasoning=attempt.reasoning,
            timestamp=attempt.timestamp,
        )
        with self._session() as session, session.begin():
            session.add(row)

    # Analytics

    def healing_stats(self) -> HealingStats:
        stmt = select(
            func.count(HealingHistoryRow.id),
            func.coalesce(func.sum(_succeeded), 0),
        )
        with self._session() as session:
            total, successful = session.execute(stmt).one()
        return HealingStats(
            total_attempts=total,
            successful_heals=successful,
            failed_heals=total - successful,
            success_rate=successful / total if total else 0.0,
        )

    def strategy_analysis(self) -> list[StrategyUsage]:
        success_rate = (cast(func.sum(_succeeded), Float) / func.count(HealingHistoryRow.id)).label("success_rate")
        usage = func.count(HealingHistoryRow.id).label("usage")
        stmt = (
            select(HealingHistoryRow.strategy, usage, func.sum(_succeeded), success_rate)
            .where(HealingHistoryRow.strategy.is_not(None))
            .group_by(HealingHistoryRow.strategy)
            .order_by(success_rate.desc(), usage.desc())
        )
        with self._session() as session:
            return [
                StrategyUsage(strategy=strategy, count=count, successful=successful, success_rate=rate or 0.0)
                for strategy, count, successful, rate in session.execute(stmt)
            ]

    def confidence_distribution(self) -> ConfidenceDistribution:
        confidence = HealingHistoryRow.confidence
        stmt = select(
            func.coalesce(func.sum(case((confidence > 0.8, 1), else_=0)), 0),
            func.coalesce(func.sum(case((confidence.between(0.5, 0.8), 1), else_=0)), 0),
            func.coalesce(func.sum(case((confidence < 0.5, 1), else_=0)), 0),
        ).where(HealingHistoryRow.success.is_(True))
        with self._session() as session:
            high, medium, low = session.execute(stmt).one()
        return ConfidenceDistribution(high=high, medium=medium, low=low)

    def top_selectors(self, limit: int = 10) -> TopSelectors:
        successful_stmt = (
            select(SelectorRow)
            .where(SelectorRow.success_rate > 0.5)
            .order_by(SelectorRow.success_rate.desc(), SelectorRow.last_used.desc())
            .limit(limit)
        )
        failure_count = func.count(HealingHistoryRow.id).label("failure_count")
        failed_stmt = (
            select(HealingHistoryRow.original_selector, failure_count, func.max(HealingHistoryRow.timestamp))
            .where(HealingHistoryRow.success.is_(False))
            .group_by(HealingHistoryRow.original_selector)
            .order_by(failure_count.desc(), func.max(HealingHistoryRow.timestamp).desc())
            .limit(limit)
        )
        with self._session() as session:
            successful = [
                SelectorUsage(selector=row.original_selector, success_rate=row.success_rate, usage_count=row.usage_count)
                for row in session.scalars(successful_stmt)
            ]
            failed = [
                SelectorFailure(selector=selector, failure_count=count, last_attempt=last_attempt)
                for selector, count, last_attempt in session.execute(failed_stmt)
            ]
        return TopSelectors(successful=successful, failed=failed)

    def page_analysis(self, limit: int = 10) -> list[PageStats]:
        attempts = func.count(HealingHistoryRow.id).label("attempts")
        stmt = (
            select(
                SelectorRow.page_url,
                attempts,
                cast(func.sum(_succeeded), Float) / func.count(HealingHistoryRow.id),
            )
            .join(SelectorRow, HealingHistoryRow.selector_id == SelectorRow.id)
            .where(SelectorRow.page_url != "")
            .group_by(SelectorRow.page_url)
            .order_by(attempts.desc())
            .limit(limit)
        )
        with self._session() as session:
            return [
                PageStats(page_url=page_url, attempts=count, success_rate=rate or 0.0)
                for page_url, count, rate in session.execute(stmt)
            ]

    def detailed_analysis(self) -> DetailedAnalysis:
        stmt = select(func.min(HealingHistoryRow.timestamp), func.max(HealingHistoryRow.timestamp))
        with self._session() as session:
            first, last = session.execute(stmt).one()
        return DetailedAnalysis(
            first_attempt=_as_datetime(first),
            last_attempt=_as_datetime(last),
            confidence_distribution=self.confidence_distribution(),
            by_page=self.page_analysis(),
        )


def _as_datetime(timestamp: float | None) -> datetime | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, UTC)
