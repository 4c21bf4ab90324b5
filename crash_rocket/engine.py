# engine.py
"""
Crash Rocket Round Engine

Responsibilities:
- Strict State Machine (IDLE -> PREPARING -> READY -> RUNNING -> CRASHED -> REPORTED)
- Seed selection (issued token, pinned token seed, or fresh secure seed)
- Async round preparation tagged by generation (stale results are dropped)
- Crash-before-autocashout ordering on every tick
- Exactly-once outcome reporting
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN, ROUND_FLOOR
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from crash_rocket.curve import first_ms_at_x100, floor_x100, multiplier_at, time_for_multiplier
from crash_rocket.errors import (
    DecodeError,
    StateError,
    TransientReportError,
    ValidationError,
)
from crash_rocket.fairness import (
    MIN_X100,
    derive_crash_x100_async,
    volatility_level,
)
from crash_rocket.issuance import DEFAULT_VOLATILITY, TokenPayload, decode_token, read_token
from crash_rocket.reporting import LoggingChannel, OutcomeChannel
from crash_rocket.utils import format_multiplier, generate_seed, parse_money_like

logger = logging.getLogger("crash_rocket.engine")

MIN_AUTO_CASHOUT_X100 = 101
CENTS = Decimal("0.01")

Clock = Callable[[], float]
CrashDeriver = Callable[[str, int], Awaitable[int]]
PendingReport = Tuple[int, Dict[str, Any]]

# =========================
# CONFIGURATION
# =========================

def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class GameConfig:
    # Volatility fraction used in tokenless mode (0.6 -> level 3)
    default_volatility: float = DEFAULT_VOLATILITY

    # With a pinned token: True = fresh seed each round, False = reuse token seed
    regenerate_seed_on_start: bool = False

    # True: keep ticking after cashout until the crash instant, report at crash.
    # False: cashout ends the round and reports immediately.
    wait_after_cashout: bool = True

    history_size: int = 12
    seed_bytes: int = 16

    # ~60 fps
    frame_interval: float = 1 / 60

    def __post_init__(self) -> None:
        if not math.isfinite(self.default_volatility):
            raise ValueError("default_volatility must be finite")
        if self.history_size < 1:
            raise ValueError("history_size must be positive")
        if self.frame_interval <= 0:
            raise ValueError("frame_interval must be positive")

    @classmethod
    def from_env(cls) -> "GameConfig":
        return cls(
            default_volatility=float(os.getenv("CRASH_DEFAULT_VOLATILITY", DEFAULT_VOLATILITY)),
            regenerate_seed_on_start=_env_flag("CRASH_REGENERATE_SEED", False),
            wait_after_cashout=_env_flag("CRASH_WAIT_AFTER_CASHOUT", True),
            history_size=int(os.getenv("CRASH_HISTORY_SIZE", 12)),
            frame_interval=float(os.getenv("CRASH_FRAME_INTERVAL", 1 / 60)),
        )

# =========================
# ENUMS
# =========================

class RoundState(str, Enum):
    IDLE = "IDLE"                              # Nothing prepared / cannot start
    PREPARING = "PREPARING"                    # Crash point being derived
    READY = "READY"                            # Accepting a bet
    RUNNING = "RUNNING"                        # Multiplier rising
    CASHED_OUT_WAITING = "CASHED_OUT_WAITING"  # Player out, rocket still flying
    CRASHED = "CRASHED"                        # Crash instant reached
    REPORTED = "REPORTED"                      # Outcome sent, round closed


ACTIVE_STATES = (RoundState.RUNNING, RoundState.CASHED_OUT_WAITING)

# =========================
# DOMAIN MODELS
# =========================

@dataclass
class Round:
    number: int
    seed: str
    volatility: float
    volatility_level: int
    token: Optional[str] = None
    init_data: str = ""

    # Fixed once preparation resolves
    crash_x100: Optional[int] = None
    crash_time_ms: Optional[float] = None

    # Set when the bet is accepted
    bet: Optional[Decimal] = None
    auto_cashout_x100: Optional[int] = None
    started_at_ms: Optional[float] = None

    # Outcome
    player_cashed_out: bool = False
    cashout_time_ms: Optional[int] = None
    cashout_x100: Optional[int] = None
    crashed: bool = False
    result_reported: bool = False

    state: RoundState = RoundState.PREPARING

    @property
    def payout(self) -> Decimal:
        if not self.player_cashed_out or self.bet is None:
            return Decimal("0.00")
        return (self.bet * self.cashout_x100 / 100).quantize(CENTS, rounding=ROUND_DOWN)

    def to_report(self) -> Dict[str, Any]:
        """Host outcome report (kind crash_v1)."""
        if self.player_cashed_out:
            cashout_ms = self.cashout_time_ms
        else:
            cashout_ms = math.floor(self.crash_time_ms)

        report: Dict[str, Any] = {"kind": "crash_v1"}
        if self.token:
            report["t"] = self.token
        report.update(
            seed=self.seed,
            volatility=self.volatility,
            bet=float(self.bet),
            auto_x100=self.auto_cashout_x100,
            cashed_out=self.player_cashed_out,
            cashout_ms=cashout_ms,
            init_data=self.init_data,
        )
        return report


@dataclass
class HistoryEntry:
    round_number: int
    seed: str
    crash_x100: int
    result_x100: int
    cashed_out: bool
    payout: Decimal = field(default_factory=lambda: Decimal("0.00"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round_number,
            "seed": self.seed,
            "crash_point": self.crash_x100 / 100,
            "multiplier": self.result_x100 / 100,
            "label": format_multiplier(self.result_x100 / 100),
            "cashed_out": self.cashed_out,
            "payout": float(self.payout),
        }

# =========================
# ENGINE CLASS
# =========================

def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class CrashRoundEngine:
    """
    Single-round state machine.
    All mutation happens inside the named transition methods below,
    under one asyncio lock, on the event loop.
    """

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        channel: Optional[OutcomeChannel] = None,
        clock: Optional[Clock] = None,
        deriver: Optional[CrashDeriver] = None,
    ) -> None:
        self.config = config or GameConfig()
        self._channel: OutcomeChannel = channel or LoggingChannel()
        self._clock = clock or _monotonic_ms
        self._derive = deriver or derive_crash_x100_async

        self._lock = asyncio.Lock()
        self._round: Optional[Round] = None
        self._generation = 0
        self._prep_task: Optional[asyncio.Task] = None
        self._pinned: Optional[Tuple[str, TokenPayload]] = None
        self._history: Deque[HistoryEntry] = deque(maxlen=self.config.history_size)

        self.last_error: Optional[str] = None
        self.last_report_error: Optional[str] = None

    # =====================================================
    # READ-ONLY ACCESS
    # =====================================================

    @property
    def state(self) -> RoundState:
        return self._round.state if self._round else RoundState.IDLE

    @property
    def current_round(self) -> Optional[Round]:
        return self._round

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def needs_preparation(self) -> bool:
        return self.state in (RoundState.IDLE, RoundState.REPORTED)

    @property
    def history(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._history]

    # =====================================================
    # PREPARATION
    # =====================================================

    def _select_seed(self, token: Optional[str]) -> Tuple[Optional[str], str, float]:
        """Returns (token, seed, volatility fraction) for the next round."""
        raw = read_token(token)
        if raw is not None:
            payload = decode_token(raw)
            self._pinned = (raw, payload)
            return raw, payload.seed, payload.vol

        if self._pinned is not None:
            raw, payload = self._pinned
            if self.config.regenerate_seed_on_start:
                return raw, generate_seed(self.config.seed_bytes), payload.vol
            return raw, payload.seed, payload.vol

        return None, generate_seed(self.config.seed_bytes), self.config.default_volatility

    async def request_new_round(self, token: Optional[str] = None, init_data: str = "") -> int:
        """
        Step 1: Enter PREPARING.
        State: IDLE/READY/PREPARING/REPORTED -> PREPARING.
        Any preparation still in flight is superseded.
        Returns the generation tag of the new round.
        """
        async with self._lock:
            if self.is_active:
                raise StateError(f"Round in progress (Status: {self.state.value})")

            self._generation += 1
            generation = self._generation
            self.last_error = None

            try:
                round_token, seed, vol = self._select_seed(token)
            except (DecodeError, ValidationError) as e:
                self._round = None
                self.last_error = str(e)
                logger.error(f"Cannot prepare round {generation}: {e}")
                raise

            level = volatility_level(vol)
            self._round = Round(
                number=generation,
                seed=seed,
                volatility=vol,
                volatility_level=level,
                token=round_token,
                init_data=init_data or "",
            )
            self._prep_task = asyncio.create_task(self._prepare(generation, seed, level))
            logger.info(
                f"Round {generation} preparing (level {level}, "
                f"{'token' if round_token else 'tokenless'})"
            )
            return generation

    async def _prepare(self, generation: int, seed: str, level: int) -> bool:
        """
        Step 2: PREPARING -> READY, once the crash point resolves.
        Results for a superseded generation are discarded.
        """
        crash_x100 = await self._derive(seed, level)

        async with self._lock:
            rnd = self._round
            if generation != self._generation or rnd is None or rnd.state != RoundState.PREPARING:
                logger.info(
                    f"Discarding stale preparation (gen {generation}, current {self._generation})"
                )
                return False

            rnd.crash_x100 = crash_x100
            rnd.crash_time_ms = time_for_multiplier(crash_x100 / 100)
            rnd.state = RoundState.READY
            logger.info(f"Round {generation} ready")
            return True

    async def wait_ready(self) -> bool:
        """Await the latest preparation task. True if a round is READY."""
        while True:
            task = self._prep_task
            if task is None:
                break
            await task
            if task is self._prep_task:
                break
        return self.state == RoundState.READY

    # =====================================================
    # BETTING ACTIONS
    # =====================================================

    @staticmethod
    def _parse_auto_cashout(value: Any) -> Optional[int]:
        if value is None or not str(value).strip():
            return None

        parsed = parse_money_like(value)
        if parsed is None:
            raise ValidationError("Auto cashout must be a number")

        x100 = int((parsed * 100).to_integral_value(rounding=ROUND_FLOOR))
        if x100 < MIN_AUTO_CASHOUT_X100:
            raise ValidationError("Auto cashout must be at least 1.01×")
        return x100

    async def place_bet(self, amount: Any, auto_cashout: Any = None) -> Round:
        """
        Step 3: Launch.
        State: READY -> RUNNING.
        Invalid input leaves the round READY.
        """
        bet = parse_money_like(amount)
        if bet is None or bet <= 0:
            raise ValidationError("Bet must be > 0")
        auto_x100 = self._parse_auto_cashout(auto_cashout)

        async with self._lock:
            rnd = self._round
            if rnd is None or rnd.state != RoundState.READY:
                raise StateError(f"Round not ready (Status: {self.state.value})")

            rnd.bet = bet
            rnd.auto_cashout_x100 = auto_x100
            rnd.started_at_ms = self._clock()
            rnd.player_cashed_out = False
            rnd.cashout_time_ms = None
            rnd.cashout_x100 = None
            rnd.crashed = False
            rnd.result_reported = False
            rnd.state = RoundState.RUNNING

            auto_label = format_multiplier(auto_x100 / 100) if auto_x100 else "off"
            logger.info(f"Round {rnd.number} started: bet {bet}, auto {auto_label}")
            return rnd

    async def cashout(self) -> Decimal:
        """
        Manual cashout at the current elapsed time, truncated to the whole
        millisecond that goes into the report.
        If the crash instant has already passed, the crash is resolved
        first and the cashout is rejected.
        """
        async with self._lock:
            rnd = self._round
            if rnd is None or rnd.state not in ACTIVE_STATES:
                raise StateError("Round not active")
            if rnd.player_cashed_out:
                raise StateError("Already cashed out")

            elapsed = self._clock() - rnd.started_at_ms
            crashed = elapsed >= rnd.crash_time_ms
            if crashed:
                self._crash(rnd)
            else:
                at_ms = math.floor(elapsed)
                x100 = max(MIN_X100, min(floor_x100(multiplier_at(at_ms)), rnd.crash_x100))
                self._cash_out(rnd, at_ms, x100, auto=False)
            pending = self._settle(rnd)
            payout = rnd.payout

        await self._deliver(pending)
        if crashed:
            raise StateError("Rocket crashed")
        return payout

    # =====================================================
    # TICK (driven by the scheduler)
    # =====================================================

    async def tick(self) -> Dict[str, Any]:
        """
        One frame: crash check first, then auto-cashout.
        Returns the snapshot after any transition.
        """
        pending = None
        async with self._lock:
            rnd = self._round
            if rnd is not None and rnd.state in ACTIVE_STATES:
                elapsed = self._clock() - rnd.started_at_ms

                if elapsed >= rnd.crash_time_ms:
                    self._crash(rnd)
                elif (
                    rnd.state == RoundState.RUNNING
                    and rnd.auto_cashout_x100 is not None
                    and floor_x100(multiplier_at(elapsed)) >= rnd.auto_cashout_x100
                ):
                    threshold = rnd.auto_cashout_x100
                    self._cash_out(rnd, first_ms_at_x100(threshold), threshold, auto=True)

                pending = self._settle(rnd)

            snapshot = self._snapshot()

        await self._deliver(pending)
        return snapshot

    # =====================================================
    # TRANSITIONS
    # =====================================================

    def _cash_out(self, rnd: Round, at_ms: int, x100: int, auto: bool) -> None:
        rnd.player_cashed_out = True
        rnd.cashout_time_ms = at_ms
        rnd.cashout_x100 = x100
        rnd.state = RoundState.CASHED_OUT_WAITING
        logger.info(
            f"Round {rnd.number} {'auto ' if auto else ''}cashout at "
            f"{format_multiplier(x100 / 100)}, payout {rnd.payout}"
        )

    def _crash(self, rnd: Round) -> None:
        rnd.crashed = True
        rnd.state = RoundState.CRASHED
        logger.info(f"Round {rnd.number} crashed at {format_multiplier(rnd.crash_x100 / 100)}")

    def _settle(self, rnd: Round) -> Optional[PendingReport]:
        """
        Close the round once it reaches a terminal condition.
        Returns the one outcome report to deliver, or None.
        """
        terminal = rnd.crashed or (rnd.player_cashed_out and not self.config.wait_after_cashout)
        if not terminal or rnd.result_reported:
            return None

        rnd.result_reported = True
        rnd.state = RoundState.REPORTED
        self._history.appendleft(
            HistoryEntry(
                round_number=rnd.number,
                seed=rnd.seed,
                crash_x100=rnd.crash_x100,
                result_x100=rnd.cashout_x100 if rnd.player_cashed_out else rnd.crash_x100,
                cashed_out=rnd.player_cashed_out,
                payout=rnd.payout,
            )
        )
        return rnd.number, rnd.to_report()

    async def _deliver(self, pending: Optional[PendingReport]) -> None:
        """Send a settled round's report. Runs outside the engine lock."""
        if pending is None:
            return
        number, report = pending
        self.last_report_error = None
        try:
            await self._channel.send(report)
        except Exception as e:
            err = TransientReportError(f"Report delivery failed: {e}")
            self.last_report_error = str(err)
            logger.error(f"Round {number}: {err}")
            return
        logger.info(f"Round {number} reported")

    # =====================================================
    # SNAPSHOT
    # =====================================================

    def _snapshot(self) -> Dict[str, Any]:
        rnd = self._round
        if rnd is None:
            return {
                "status": RoundState.IDLE.value,
                "round": None,
                "multiplier": 1.00,
                "elapsed_ms": 0,
                "crash_point": None,
                "error": self.last_error,
            }

        elapsed_ms = 0.0
        display_x100 = 100
        if rnd.started_at_ms is not None:
            if rnd.crashed:
                elapsed_ms = rnd.crash_time_ms
                display_x100 = rnd.crash_x100
            elif rnd.state in ACTIVE_STATES:
                elapsed_ms = max(0.0, self._clock() - rnd.started_at_ms)
                display_x100 = min(floor_x100(multiplier_at(elapsed_ms)), rnd.crash_x100)
            elif rnd.player_cashed_out:
                elapsed_ms = rnd.cashout_time_ms
                display_x100 = rnd.cashout_x100

        return {
            "status": rnd.state.value,
            "round": rnd.number,
            "multiplier": display_x100 / 100,
            "elapsed_ms": int(elapsed_ms),
            "crash_point": rnd.crash_x100 / 100 if rnd.result_reported or rnd.crashed else None,
            "volatility_level": rnd.volatility_level,
            "bet": float(rnd.bet) if rnd.bet is not None else None,
            "auto_cashout": rnd.auto_cashout_x100 / 100 if rnd.auto_cashout_x100 else None,
            "cashed_out": rnd.player_cashed_out,
            "cashout_multiplier": rnd.cashout_x100 / 100 if rnd.cashout_x100 else None,
            "payout": float(rnd.payout),
            "error": self.last_error,
            "report_error": self.last_report_error,
        }

    async def get_current_state(self) -> Dict[str, Any]:
        """Read-only snapshot; never drives transitions."""
        async with self._lock:
            return self._snapshot()
