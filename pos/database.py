"""Database configuration and initialization.

Two stores share one schema: the remote system of record and the local
cache used while the remote cannot be reached.
"""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base

from pos.exceptions import PosError, StoreUnavailableError, TransactionFailure

logger = logging.getLogger(__name__)

# Create SQLAlchemy base
Base = declarative_base()

SCHEMA_VERSION = 1

# Global stores
remote_store = None
local_store = None


def _build_engine(url, echo=False, connect_timeout=5):
    """Create an engine; SQLite files get immediate write transactions."""
    if url.startswith('sqlite'):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={'check_same_thread': False, 'timeout': 30},
        )

        @event.listens_for(engine, 'connect')
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, 'begin')
        def _begin_immediate(conn):
            # Take the write lock up front so concurrent orders queue on the
            # busy timeout instead of failing on lock upgrade.
            conn.exec_driver_sql('BEGIN IMMEDIATE')

        return engine

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,  # Enable connection health checks
        pool_size=10,
        max_overflow=20,
        connect_args={'connect_timeout': connect_timeout},
    )


class Store:
    """One database (engine + session factory) with a transactional scope."""

    def __init__(self, name, url, echo=False, connect_timeout=5):
        self.name = name
        self.url = url
        self.engine = _build_engine(url, echo=echo, connect_timeout=connect_timeout)
        self.Session = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def __repr__(self):
        return f"<Store(name='{self.name}')>"

    @contextmanager
    def session_scope(self):
        """
        Run a unit of work: commit on success, roll back on any error.

        session.info['store'] names the store the work runs against.
        Domain errors propagate unchanged. Connection problems become
        StoreUnavailableError; any other database error becomes a generic
        TransactionFailure so storage internals do not leak to callers.
        """
        session = self.Session(info={'store': self.name})
        try:
            yield session
            session.commit()
        except PosError:
            session.rollback()
            raise
        except (OperationalError, InterfaceError) as e:
            _safe_rollback(session)
            logger.warning(f"[DB] {self.name} unreachable: {e}")
            raise StoreUnavailableError(self.name) from e
        except SQLAlchemyError as e:
            _safe_rollback(session)
            logger.error(f"[DB] {self.name} transaction failed: {e}")
            raise TransactionFailure() from e
        except Exception:
            _safe_rollback(session)
            raise
        finally:
            session.close()

    def ping(self):
        """Round-trip a trivial query. Raises on failure."""
        with self.engine.connect() as conn:
            conn.execute(text('SELECT 1'))

    def create_schema(self):
        """Create missing tables and record the schema version marker."""
        from pos.models import SchemaVersion

        Base.metadata.create_all(self.engine)
        with self.session_scope() as session:
            marker = session.get(SchemaVersion, 1)
            if marker is None:
                session.add(SchemaVersion(id=1, version=SCHEMA_VERSION))
            elif marker.version > SCHEMA_VERSION:
                logger.warning(
                    f"[DB] {self.name} schema version {marker.version} is newer than "
                    f"this release ({SCHEMA_VERSION})"
                )

    def schema_version(self):
        from pos.models import SchemaVersion

        with self.session_scope() as session:
            marker = session.get(SchemaVersion, 1)
            return marker.version if marker else None

    def dispose(self):
        self.engine.dispose()


def _safe_rollback(session):
    try:
        session.rollback()
    except SQLAlchemyError as e:
        logger.warning(f"[DB] Rollback failed: {e}")


def init_db(app):
    """Initialize both stores from app config."""
    global remote_store, local_store

    echo = app.config.get('SQLALCHEMY_ECHO', False)
    timeout = app.config.get('DB_CONNECT_TIMEOUT', 5)
    remote_store = Store('remote', app.config['REMOTE_DATABASE_URL'], echo=echo, connect_timeout=timeout)
    local_store = Store('local', app.config['LOCAL_DATABASE_URL'], echo=echo, connect_timeout=timeout)

    # The local cache must always be usable; the remote may be down at boot.
    local_store.create_schema()
    try:
        remote_store.create_schema()
    except (PosError, SQLAlchemyError) as e:
        app.logger.warning(f"Remote store not ready at startup: {e}")

    app.extensions['pos_stores'] = {'remote': remote_store, 'local': local_store}
    return remote_store, local_store


def get_remote_store():
    """Get the system-of-record store."""
    return remote_store


def get_local_store():
    """Get the local cache store."""
    return local_store
