"""Database configuration and initialization."""
import asyncio

from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from dispensary.exceptions import RemoteReadError

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def init_engine(database_uri, echo=False):
    """Create engine and session registry without a Flask app (tests, scripts)."""
    global engine, db_session

    options = {'echo': echo, 'pool_pre_ping': True}
    if database_uri.startswith('sqlite'):
        # Stock queries run in worker threads
        options['connect_args'] = {'check_same_thread': False}
        if database_uri in ('sqlite://', 'sqlite:///:memory:'):
            options['poolclass'] = StaticPool
    else:
        options.update(pool_size=10, max_overflow=20)
    engine = create_engine(database_uri, **options)

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )
    return engine


def init_db(app):
    """Initialize database connection."""
    init_engine(
        app.config['SQLALCHEMY_DATABASE_URI'],
        echo=app.config.get('SQLALCHEMY_ECHO', False),
    )

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create every table registered on Base (development and tests)."""
    import dispensary.models  # noqa: F401  (registers mappers)
    Base.metadata.create_all(engine)


def get_session():
    """Get database session."""
    return db_session


def _call_in_session(session_factory, fn, *args):
    session = session_factory()
    try:
        return fn(session, *args)
    except SQLAlchemyError as e:
        session.rollback()
        raise RemoteReadError(f"Store error: {e}") from e
    finally:
        session.close()


async def run_in_session(session_factory, fn, *args):
    """
    Run fn(session, *args) in a worker thread with a fresh session.

    The caller suspends until the query finishes. SQLAlchemy errors are
    re-raised as RemoteReadError.
    """
    return await asyncio.to_thread(_call_in_session, session_factory, fn, *args)
