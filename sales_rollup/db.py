from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool

from sales_rollup.config import config
from sales_rollup.exceptions import DatabaseError
from sales_rollup.models import Base

def engine_options(url, db_config):
    """Keyword arguments for create_engine suited to the URL's backend.

    SQLite connections are shared with the batch job's worker threads, and an
    in-memory SQLite database only exists on a single connection.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == 'sqlite':
        options = {'connect_args': {'check_same_thread': False}}
        if parsed.database in (None, '', ':memory:'):
            options['poolclass'] = StaticPool
        return options

    return {
        'pool_size': db_config['pool_size'],
        'max_overflow': db_config['max_overflow'],
        'pool_timeout': db_config['pool_timeout'],
        'pool_recycle': db_config['pool_recycle']
    }

class Database:
    """Database connection manager for the Sales Rollup engine."""

    _instance = None

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Database, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize the database connection if not already initialized."""
        if self._initialized:
            return

        self._engine = None
        self._session = None
        self._initialized = True

    def initialize(self, connection_string=None):
        """Connect to the database, replacing any previous engine.

        Args:
            connection_string: Optional SQLAlchemy URL; DATABASE.url when omitted
        """
        db_config = config.db_config
        url = connection_string or db_config['url']

        if self._session is not None:
            self._session.remove()
        if self._engine is not None:
            self._engine.dispose()

        self._engine = create_engine(url, echo=db_config['echo'], **engine_options(url, db_config))
        self._session = scoped_session(sessionmaker(bind=self._engine))

    def create_all_tables(self):
        """Create all tables defined in the models."""
        Base.metadata.create_all(self.engine)

    def drop_all_tables(self):
        """Drop all tables from the database."""
        Base.metadata.drop_all(self.engine)

    @property
    def session(self):
        """Thread-local session registry."""
        if self._session is None:
            self.initialize()
        return self._session

    @property
    def engine(self):
        if self._engine is None:
            self.initialize()
        return self._engine

    @contextmanager
    def session_scope(self):
        """One transaction: commit on success, roll back on any error.

        Raises:
            DatabaseError: wrapping any SQLAlchemy failure
        """
        session = self.session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise DatabaseError(f"Database operation failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

# Global database instance
db = Database()

@contextmanager
def session_scope():
    """Session scope context manager."""
    with db.session_scope() as session:
        yield session
