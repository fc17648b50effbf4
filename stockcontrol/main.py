from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from sqlalchemy import select

from stockcontrol.db import Base, engine, get_session
from stockcontrol.logging_config import get_logger, setup_logging
from stockcontrol.models import User
from stockcontrol.routers.health import router as health_router
from stockcontrol.routers.stock import router as stock_router
from stockcontrol.routers.stock_config import router as stock_config_router

logger = get_logger("main")


def _run_startup_tasks() -> None:
    """Crea el esquema y asegura que existan los usuarios iniciales."""
    Base.metadata.create_all(bind=engine)

    db = get_session()
    try:
        users_to_ensure = [
            {"username": os.getenv("ADMIN_USERNAME", "admin"), "role": "admin"},
            {"username": os.getenv("OPERATOR_USERNAME", "operator"), "role": "operator"},
        ]

        for spec in users_to_ensure:
            username = (spec.get("username") or "").strip()
            if not username:
                continue
            existing = db.scalar(select(User).where(User.username == username))
            if existing is None:
                db.add(User(username=username, role=spec["role"], is_active=True))
                logger.info("Created bootstrap user %s (%s)", username, spec["role"])
            else:
                existing.role = spec["role"]
                existing.is_active = True
        db.commit()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    _run_startup_tasks()
    logger.info("Stock control service started")
    yield


app = FastAPI(title="Stock Control", lifespan=lifespan)

app.include_router(health_router)
app.include_router(stock_router)
app.include_router(stock_config_router)
