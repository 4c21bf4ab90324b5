# app.py
"""
Crash Rocket – HTTP Entry Point

Responsibilities:
- FastAPI HTTP server
- Request Validation (Pydantic)
- Round orchestration (engine + tick scheduler)
- Outcome channel selection (Telegram or log)

Integration:
- Uses engine.py (Decimal, Async, State Machine)
- Uses scheduler.py (frame-rate tick loop)
"""

from __future__ import annotations

import os
import logging
from contextlib import asynccontextmanager
from typing import Optional, Union

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from crash_rocket.engine import CrashRoundEngine, GameConfig
from crash_rocket.errors import DecodeError, StateError, ValidationError
from crash_rocket.reporting import LoggingChannel, OutcomeChannel, TelegramChannel
from crash_rocket.scheduler import TickScheduler

# =====================================================
# LOGGING & CONFIG
# =====================================================

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("crash_rocket.app")


def build_channel() -> OutcomeChannel:
    bot_token = os.getenv("BOT_TOKEN", "")
    chat_id = os.getenv("REPORT_CHAT_ID", "")
    if bot_token and chat_id:
        logger.info("Outcome reports -> Telegram")
        return TelegramChannel(bot_token, chat_id)
    logger.info("Outcome reports -> log (no BOT_TOKEN/REPORT_CHAT_ID)")
    return LoggingChannel()

# =====================================================
# DATA MODELS (Pydantic)
# =====================================================

class NewRoundRequest(BaseModel):
    token: Optional[str] = None
    init_data: str = ""

class BetRequest(BaseModel):
    # Raw input; parsed to Decimal by the engine ("10,5" accepted)
    amount: Union[str, float] = Field(...)
    auto_cashout: Optional[Union[str, float]] = None

# =====================================================
# LIFECYCLE
# =====================================================

channel = build_channel()
engine = CrashRoundEngine(config=GameConfig.from_env(), channel=channel)
scheduler = TickScheduler(engine)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await channel.start()
    logger.info("Startup: Preparing first round...")
    await engine.request_new_round()
    await engine.wait_ready()

    yield

    logger.info("Shutdown: Stopping tick loop...")
    await scheduler.stop()
    await channel.close()

# =====================================================
# APP INIT
# =====================================================

app = FastAPI(
    title="Crash Rocket API",
    version="1.0.0",
    lifespan=lifespan,
)

# =====================================================
# ERROR HANDLERS
# =====================================================

@app.exception_handler(StateError)
async def state_error_handler(_, exc: StateError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"error": "Game State Conflict", "detail": str(exc)},
    )

@app.exception_handler(ValidationError)
async def validation_error_handler(_, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": "Invalid Input", "detail": str(exc)},
    )

@app.exception_handler(DecodeError)
async def decode_error_handler(_, exc: DecodeError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid Token", "detail": str(exc)},
    )

# =====================================================
# API – ROUND CONTROL
# =====================================================

@app.post("/api/round")
async def api_new_round(payload: NewRoundRequest):
    """
    Prepare a fresh round, optionally from an issuer token.
    Any pending tick from the previous round is released first.
    """
    await scheduler.restart(token=payload.token, init_data=payload.init_data)
    await engine.wait_ready()
    return await engine.get_current_state()

@app.get("/api/state")
async def api_state():
    """
    Polling endpoint for the live round.
    """
    return await engine.get_current_state()

@app.get("/api/history")
async def api_history():
    return {"history": engine.history}

# =====================================================
# API – BETTING & CASHOUT
# =====================================================

@app.post("/api/bet")
async def api_place_bet(payload: BetRequest):
    """
    Places the bet and launches the rocket.
    A settled round is replaced by a freshly prepared one first.
    """
    if engine.needs_preparation and engine.last_error is None:
        await scheduler.restart()
    await engine.wait_ready()

    rnd = await engine.place_bet(payload.amount, payload.auto_cashout)
    scheduler.start()

    return {
        "status": "accepted",
        "round": rnd.number,
        "bet": float(rnd.bet),
    }

@app.post("/api/cashout")
async def api_cashout():
    """
    Manual cashout. Engine is the authority on the payout amount.
    """
    payout = await engine.cashout()
    snapshot = await engine.get_current_state()
    return {
        "status": "cashed_out",
        "payout": float(payout),
        "multiplier": snapshot["cashout_multiplier"],
    }
