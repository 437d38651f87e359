import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db import models  # noqa: F401
from app.db.models.production import ProcessDefinition
from app.events.dispatcher import clear_handlers
from services.inventory import ledger
from services.production import batches

ORG = "org-1"
OTHER_ORG = "org-2"


@pytest.fixture(scope="function")
def engine():
    eng = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="function")
def db(session_factory):
    with session_factory() as sess:
        yield sess


@pytest.fixture(autouse=True)
def _no_handlers():
    clear_handlers()
    yield
    clear_handlers()


def make_process(db, *, input_id=None, output_id=None, output_ids=(), rate=None, enabled=True, name="Peeling", org=ORG):
    recipe = {"outputProductIds": list(output_ids)}
    if input_id:
        recipe["inputProductId"] = input_id
    if output_id:
        recipe["outputProductId"] = output_id
    if rate is not None:
        recipe["piecework"] = {"enabled": enabled, "rate": rate}
    p = ProcessDefinition(organization_id=org, name=name, type="production", recipe=recipe)
    db.add(p)
    db.commit()
    return p


@pytest.fixture(scope="function")
def seeded(db):
    """P1 (raw, 100 in stock) -> P2 (finished), P3 co-product; one active batch."""
    p1 = ledger.open_product(db, organization_id=ORG, name="Whole coconut", opening_stock=100)
    p2 = ledger.open_product(db, organization_id=ORG, name="Coconut pulp", unit="kg")
    p3 = ledger.open_product(db, organization_id=ORG, name="Coconut shell")
    db.commit()
    process = make_process(db, input_id=p1.id, output_id=p2.id, rate=500)
    batch = batches.start_batch(db, organization_id=ORG, process_id=process.id)
    return SimpleNamespace(p1=p1.id, p2=p2.id, p3=p3.id, process=process.id, batch=batch.id)
