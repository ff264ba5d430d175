# File: parkreserve/infrastructure/storage.py
"""
Client Storage for the Parking Reservation Client

Persists the small amount of client state that must survive a restart:
the session token under "token" and the serialized user under "user".

Storage Implementations:
- InMemoryStorage - For testing and development
- SQLAlchemyStorage - Key-value table in a relational database
  (sqlite file by default)

Writes go through a unit of work that commits on success and rolls back
on error.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional
from datetime import datetime
import json
import logging

from sqlalchemy import create_engine, Column, String, Text, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError

TOKEN_KEY = "token"
USER_KEY = "user"


# ============================================================================
# STORAGE INTERFACE
# ============================================================================

class ClientStorage(ABC):
    """Key-value storage for persisted client state"""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    def get_json(self, key: str) -> Optional[dict]:
        """Read a JSON value; corrupt values are dropped and reported as missing"""
        raw = self.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logging.getLogger(self.__class__.__name__).warning(
                f"Discarding corrupt value stored under '{key}'"
            )
            self.remove_item(key)
            return None

    def set_json(self, key: str, value: dict) -> None:
        self.set_item(key, json.dumps(value))

    def clear_session(self) -> None:
        """Forget the persisted token and user"""
        self.remove_item(TOKEN_KEY)
        self.remove_item(USER_KEY)


class InMemoryStorage(ClientStorage):
    """In-memory storage for testing"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class StorageEntryModel(Base):
    """SQLAlchemy model for a stored key"""
    __tablename__ = 'client_storage'

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


# ============================================================================
# UNIT OF WORK
# ============================================================================

class StorageUnitOfWork:
    """Unit of Work over a storage session"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    def __enter__(self) -> Session:
        self.session = self.session_factory()
        return self.session

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self._logger.error(f"Exception in unit of work: {exc_val}")
                self.session.rollback()
            else:
                self.commit()
        finally:
            self.session.close()

    def commit(self):
        try:
            self.session.commit()
            self._logger.debug("Transaction committed")
        except SQLAlchemyError as e:
            self._logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise


class SQLAlchemyStorage(ClientStorage):
    """Client storage backed by a single key-value table"""

    def __init__(self, database_url: str = "sqlite:///parkreserve.db"):
        self.database_url = database_url
        self._logger = logging.getLogger(self.__class__.__name__)

        engine_options = {"echo": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so the in-memory database outlives sessions
            engine_options.update(
                connect_args={"check_same_thread": False},
                poolclass=StaticPool
            )

        self.engine = create_engine(database_url, **engine_options)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)
        self._logger.info(f"Client storage ready at {database_url}")

    def unit_of_work(self) -> StorageUnitOfWork:
        return StorageUnitOfWork(self._session_factory)

    def get_item(self, key: str) -> Optional[str]:
        with self.unit_of_work() as session:
            entry = session.get(StorageEntryModel, key)
            return entry.value if entry else None

    def set_item(self, key: str, value: str) -> None:
        with self.unit_of_work() as session:
            entry = session.get(StorageEntryModel, key)
            if entry is None:
                session.add(StorageEntryModel(key=key, value=value))
            else:
                entry.value = value
        self._logger.debug(f"Stored key '{key}'")

    def remove_item(self, key: str) -> None:
        with self.unit_of_work() as session:
            entry = session.get(StorageEntryModel, key)
            if entry is not None:
                session.delete(entry)

    def clear(self) -> None:
        with self.unit_of_work() as session:
            session.query(StorageEntryModel).delete()

    def close(self) -> None:
        self.engine.dispose()
