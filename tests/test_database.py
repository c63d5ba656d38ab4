"""Tests for core/database.py -- the transaction() unit of work."""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table, func, select
from sqlalchemy.engine import Transaction
from sqlalchemy.exc import OperationalError

from core.database import transaction
from core.errors import Conflict
from farm.models import POOLS
from farm.store import FarmStore


@pytest.fixture
def notes(engine):
    md = MetaData()
    t = Table("notes", md, Column("id", Integer, primary_key=True), Column("text", String(50)))
    md.create_all(engine)
    return engine, t


def _count(engine, t) -> int:
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(t)).scalar_one()


def test_commit_on_success(notes):
    engine, t = notes
    with transaction(engine) as conn:
        conn.execute(t.insert().values(text="ok"))
    assert _count(engine, t) == 1


def test_rollback_on_error(notes):
    engine, t = notes
    with pytest.raises(Conflict):
        with transaction(engine) as conn:
            conn.execute(t.insert().values(text="lost"))
            raise Conflict("choque")
    assert _count(engine, t) == 0


def test_failed_rollback_keeps_original_error(notes, caplog):
    """A rollback that itself fails is logged; the caller still sees the first error."""
    engine, t = notes
    boom = OperationalError("ROLLBACK", {}, Exception("connection lost"))
    with caplog.at_level(logging.ERROR, logger="piscicola.db"):
        with patch.object(Transaction, "rollback", side_effect=boom):
            with pytest.raises(Conflict) as exc:
                with transaction(engine) as conn:
                    conn.execute(t.insert().values(text="lost"))
                    raise Conflict("choque")
    assert exc.value.msg == "choque"
    assert "Rollback failed" in caplog.text
    # Closing the connection still discards the uncommitted insert.
    assert _count(engine, t) == 0


def test_store_error_survives_failed_rollback(engine):
    """A store-level Conflict is what the route sees even if rollback breaks."""
    store = FarmStore(engine)
    store.create(POOLS, {"name": "Estanque A"}, actor_id=1)
    boom = OperationalError("ROLLBACK", {}, Exception("connection lost"))
    with patch.object(Transaction, "rollback", side_effect=boom):
        with pytest.raises(Conflict) as exc:
            store.create(POOLS, {"name": "estanque a"}, actor_id=1)
    assert exc.value.msg == "Nombre ya existe (activo)."
