"""
Local store capability used by the upserter.

Every record is reconciled inside its own unit of work (one SQLAlchemy
session) so upserts can run on worker threads without sharing a session.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Iterator, Mapping, Tuple, Type

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from exchange_sync.models import db
from exchange_sync.sync.errors import PersistenceError


class StoreSession:
    """find-or-create, update, find-one and count over a single session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_one(self, model: Type[Any], **criteria: Any):
        stmt = select(model).filter_by(**criteria).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()

    def count(self, model: Type[Any]) -> int:
        return int(self.session.execute(select(func.count()).select_from(model)).scalar_one())

    def find_or_create(
        self,
        model: Type[Any],
        key_column: str,
        key: Any,
        defaults: Mapping[str, Any] | None = None,
    ) -> Tuple[Any, bool]:
        return self.find_or_create_by(model, {key_column: key}, defaults)

    def find_or_create_by(
        self,
        model: Type[Any],
        criteria: Mapping[str, Any],
        defaults: Mapping[str, Any] | None = None,
    ) -> Tuple[Any, bool]:
        """
        Return ``(entity, created)`` for the row matching ``criteria``.

        A concurrent insert that wins the unique constraint race is resolved by
        re-reading the winner and returning it as found.
        """

        existing = self.find_one(model, **criteria)
        if existing is not None:
            return existing, False

        entity = model(**{**dict(defaults or {}), **dict(criteria)})
        savepoint = self.session.begin_nested()
        try:
            self.session.add(entity)
            self.session.flush()
        except IntegrityError:
            savepoint.rollback()
            winner = self.find_one(model, **criteria)
            if winner is None:
                raise
            return winner, False
        savepoint.commit()
        return entity, True

    @staticmethod
    def update(entity: Any, fields: Mapping[str, Any]) -> bool:
        changed = False
        for name, value in fields.items():
            if getattr(entity, name) != value:
                setattr(entity, name, value)
                changed = True
        return changed


class SqlAlchemyStore:
    """Hands out per-record units of work bound to the application's engine."""

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self.session_factory = session_factory or sessionmaker(bind=db.engine, expire_on_commit=False)

    @contextmanager
    def unit_of_work(self) -> Iterator[StoreSession]:
        session = self.session_factory()
        try:
            yield StoreSession(session)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(str(exc.__cause__ or exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def count(self, model: Type[Any]) -> int:
        with self.unit_of_work() as uow:
            return uow.count(model)
