"""
Shared fixtures: an in-memory SQLite database seeded with two branches,
a handful of products and an admin/operator pair of users.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stockcontrol.db import Base
from stockcontrol.models import Branch, Product, Supply, User
from stockcontrol.stock_config import StockPolicy


def make_session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def seed(db):
    centro = Branch(name="Sucursal Centro", type="sucursal")
    norte = Branch(name="Depósito Norte", type="deposito")
    db.add_all([centro, norte])

    admin = User(username="admin", role="admin", is_active=True)
    operator = User(username="operator", role="operator", is_active=True)
    db.add_all([admin, operator])

    difusor = Product(name="Difusor Bambú", barcode="7790001000011", min_stock=2)
    vela = Product(name="Vela Aromática Lavanda", barcode="7790001000028", min_stock=3)
    sahumerio = Product(name="Sahumerio Sándalo", barcode="7790001000035", min_stock=0)
    retirado = Product(name="Difusor Retirado", barcode="7790001000042", min_stock=0, active=False)
    db.add_all([difusor, vela, sahumerio, retirado])

    esencia = Supply(name="Esencia de bambú", unit_of_measure="ml", min_stock=100)
    db.add(esencia)
    db.commit()

    return {
        "centro": centro,
        "norte": norte,
        "admin": admin,
        "operator": operator,
        "difusor": difusor,
        "vela": vela,
        "sahumerio": sahumerio,
        "retirado": retirado,
        "esencia": esencia,
    }


@pytest.fixture
def session_factory():
    return make_session_factory()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def data(db):
    return seed(db)


@pytest.fixture
def policy():
    return StockPolicy()
