"""Ledger schema and engine wiring for the shared task table."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Integer,
    Text,
    create_engine,
    event,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from mapshots.constants import STATUS_PENDING


Base = declarative_base()


class CaptureTask(Base):
    __tablename__ = "capture_tasks"

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    source_url = Column(Text, nullable=False)
    status = Column(Text, nullable=False, server_default=STATUS_PENDING, index=True)
    assigned_worker = Column(Text, nullable=True)
    lease_started_at = Column(DateTime(timezone=True), nullable=True)
    last_processed_at = Column(DateTime(timezone=True), nullable=True)
    artifact_refs = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=list)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, server_default="0")
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


def create_ledger_engine(url: str) -> Engine:
    engine = create_engine(url, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        _serialize_sqlite_transactions(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def _serialize_sqlite_transactions(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write; a claim must hold the write
    # lock before it reads eligible rows.
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
