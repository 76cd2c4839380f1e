from __future__ import annotations
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base


Base = declarative_base()


def build_engine(database_url: str) -> Engine:
	sqlite = database_url.startswith("sqlite")
	connect_args = {"check_same_thread": False} if sqlite else {}
	engine = create_engine(database_url, connect_args=connect_args, future=True)
	if sqlite:
		# SQLite leaves foreign keys off unless asked per connection
		@event.listens_for(engine, "connect")
		def _enable_foreign_keys(dbapi_connection, _record):
			cursor = dbapi_connection.cursor()
			cursor.execute("PRAGMA foreign_keys=ON")
			cursor.close()
	return engine


def build_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True, expire_on_commit=False)


def get_db(request: Request) -> Iterator[Session]:
	db = request.app.state.session_factory()
	try:
		yield db
	finally:
		db.close()
