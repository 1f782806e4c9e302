"""
Scanner Scheduler - leader-elected periodic driver of the scanner engine
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

import structlog

from marketpulse.events.leader_election import LeaderElection
from marketpulse.events.market_calendar import MarketCalendar
from marketpulse.models.market_data import MarketPhase
from marketpulse.models.scanner import ScannerPreset, ScannerResult
from marketpulse.scanners.engine import ScannerEngine, ScanSnapshot
from marketpulse.scanners.universe import UniverseBuilder
from marketpulse.state.store import StateStore

logger = structlog.get_logger(__name__)

DEFAULT_CADENCES: Mapping[MarketPhase, float] = {
    MarketPhase.REGULAR: 20.0,
    MarketPhase.PRE: 90.0,
    MarketPhase.POST: 90.0,
    MarketPhase.CLOSED: 300.0,
}


class ScannerScheduler:
    """
    Runs the scanner engine on a market-phase cadence.

    Only the elected leader scans; followers stay idle and observe results
    through the store. A failed scan is logged and counted and the next
    tick still fires.
    """

    def __init__(
        self,
        store: StateStore,
        engine: ScannerEngine,
        universe: UniverseBuilder,
        calendar: MarketCalendar,
        election: LeaderElection,
        cadence_overrides: Optional[Mapping[str, float]] = None,
        phase_refresh_interval: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.engine = engine
        self.universe = universe
        self.calendar = calendar
        self.election = election
        self.phase_refresh_interval = phase_refresh_interval
        self._clock = clock

        self.cadences: Dict[MarketPhase, float] = dict(DEFAULT_CADENCES)
        for phase_name, seconds in (cadence_overrides or {}).items():
            try:
                self.cadences[MarketPhase(phase_name.upper())] = float(seconds)
            except ValueError:
                logger.warning("Ignoring cadence override", phase=phase_name, seconds=seconds)

        self.phase = MarketPhase.CLOSED
        self._tasks: List[asyncio.Task] = []
        self._wake = asyncio.Event()
        self.scans = 0
        self.failures = 0
        self.last_run: Optional[float] = None
        self.last_duration_ms: Optional[float] = None
        self.last_error: Optional[str] = None

        self._forward_leadership = election.on_change
        election.on_change = self._on_leadership_change

    def _on_leadership_change(self, is_leader: bool) -> None:
        if self._forward_leadership is not None:
            self._forward_leadership(is_leader)
        if is_leader:
            # A promoted follower scans now rather than after a full cadence
            self._wake.set()

    def cadence_for(self, phase: Optional[MarketPhase] = None) -> float:
        return self.cadences[phase or self.phase]

    def refresh_phase(self, now: Optional[datetime] = None) -> MarketPhase:
        now = now or datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        phase = self.calendar.phase_at(now)
        if phase != self.phase:
            logger.info(
                "Market phase changed",
                previous=self.phase.value,
                current=phase.value,
                cadence_seconds=self.cadence_for(phase),
            )
            self.phase = phase
            self._wake.set()
        self.store.set_market_phase(phase)
        return phase

    # Lifecycle

    def start(self) -> None:
        if self._tasks:
            return
        self.refresh_phase()
        self.election.start()
        self._tasks = [
            asyncio.create_task(self._phase_loop(), name="scanner-phase"),
            asyncio.create_task(self._scan_loop(), name="scanner-scan"),
        ]
        logger.info(
            "Scanner scheduler started",
            instance=self.election.instance_id,
            is_leader=self.election.is_leader,
            phase=self.phase.value,
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.election.stop()
        logger.info("Scanner scheduler stopped", scans=self.scans, failures=self.failures)

    async def _phase_loop(self) -> None:
        while True:
            await asyncio.sleep(self.phase_refresh_interval)
            self.refresh_phase()

    async def _scan_loop(self) -> None:
        while True:
            if self.election.is_leader:
                await self.run_once()
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.cadence_for())
            except asyncio.TimeoutError:
                pass

    # Scanning

    async def run_once(self, force: bool = False) -> Optional[Dict[ScannerPreset, ScannerResult]]:
        """One fire: universe, engine, one atomic store write"""
        if not force and not self.election.is_leader:
            return None
        started = time.perf_counter()
        try:
            await self.universe.refresh_seeds()
            now_ms = int(self._clock() * 1000)
            symbols = self.universe.build(datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc))
            snapshot = ScanSnapshot.from_store(
                self.store, symbols, now_ms, self.engine.thresholds.news_window_minutes
            )
            results = self.engine.run(snapshot)
            self.store.put_scanner_results(results)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            logger.exception("Scanner run failed", phase=self.phase.value)
            return None

        self.scans += 1
        self.last_run = self._clock()
        self.last_duration_ms = round((time.perf_counter() - started) * 1000, 3)
        logger.info(
            "Scanner run complete",
            phase=self.phase.value,
            universe=len(symbols),
            scanned=len(snapshot.ticks),
            duration_ms=self.last_duration_ms,
        )
        return results

    async def force_run(self) -> Optional[Dict[ScannerPreset, ScannerResult]]:
        return await self.run_once(force=True)

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": bool(self._tasks),
            "phase": self.phase.value,
            "cadence_seconds": self.cadence_for(),
            "last_run": self.last_run,
            **self.election.get_status(),
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "scans": self.scans,
            "failures": self.failures,
            "last_duration_ms": self.last_duration_ms,
            "last_error": self.last_error,
            "engine_runs": self.engine.runs,
        }
