from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from stockcontrol.db import get_session
from stockcontrol.services.alert_service import AlertService
from stockcontrol.services.bulk_load_service import BulkLoadService
from stockcontrol.services.consistency_service import ConsistencyAuditor
from stockcontrol.services.dashboard_service import DashboardService
from stockcontrol.services.stock_service import StockService
from stockcontrol.services.threshold_service import ThresholdConfigService
from stockcontrol.stock_config import StockPolicy, load_stock_policy


def session_dep() -> Generator[Session, None, None]:
    db = get_session()
    try:
        yield db
    finally:
        db.close()


def policy_dep() -> StockPolicy:
    return load_stock_policy()


def stock_service_dep(
    db: Session = Depends(session_dep), policy: StockPolicy = Depends(policy_dep)
) -> StockService:
    return StockService(db, policy=policy)


def auditor_dep(
    db: Session = Depends(session_dep),
    policy: StockPolicy = Depends(policy_dep),
    stock_service: StockService = Depends(stock_service_dep),
) -> ConsistencyAuditor:
    return ConsistencyAuditor(db, stock_service=stock_service, policy=policy)


def threshold_service_dep(
    db: Session = Depends(session_dep), policy: StockPolicy = Depends(policy_dep)
) -> ThresholdConfigService:
    return ThresholdConfigService(db, policy=policy)


def alert_service_dep(db: Session = Depends(session_dep)) -> AlertService:
    return AlertService(db)


def dashboard_service_dep(
    db: Session = Depends(session_dep), policy: StockPolicy = Depends(policy_dep)
) -> DashboardService:
    return DashboardService(db, policy=policy)


def bulk_load_service_dep(
    db: Session = Depends(session_dep),
    policy: StockPolicy = Depends(policy_dep),
    stock_service: StockService = Depends(stock_service_dep),
) -> BulkLoadService:
    return BulkLoadService(db, stock_service=stock_service, policy=policy)
