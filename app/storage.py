import logging
from datetime import datetime, timezone
from typing import Any, Generator, Optional, Tuple

from fastapi import Request
from sqlalchemy import DateTime, create_engine, func, inspect, select, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from app.config import Settings
from app.errors import MessageNotFoundError, MessageValidationError, StorageError

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

MAX_FIELD_LENGTH = 255

# Largest value a BIGINT / SQLite INTEGER can hold
MAX_MESSAGE_ID = 2**63 - 1

TIMESTAMP_COLUMNS = ("created_at", "updated_at")


# =============================================================================
# Engine Lifecycle
# =============================================================================

def normalize_database_url(url: str) -> str:
    """
    Point bare Postgres URLs at the psycopg (v3) driver.

    postgres://... and postgresql://... both become postgresql+psycopg://...
    Any other URL is returned unchanged.
    """
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def engine_options(settings: Settings, url: str) -> dict[str, Any]:
    """Keyword arguments for create_engine: pool bounds, or SQLite thread settings."""
    if url.startswith("sqlite"):
        # check_same_thread=False is required for SQLite with FastAPI's threadpool
        engine_kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    else:
        engine_kwargs = {
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": 0,
            "pool_timeout": settings.DB_POOL_TIMEOUT,
            "pool_recycle": settings.DB_POOL_RECYCLE,
            "pool_pre_ping": True,
        }
        if settings.DATABASE_SSL:
            engine_kwargs["connect_args"] = {"sslmode": "require"}
    return engine_kwargs


def create_db_engine(settings: Settings) -> Engine:
    """
    Build the SQLAlchemy engine and its bounded connection pool.

    The engine is owned by the application lifespan (see app.main) and
    disposed on shutdown; nothing in this module keeps a global reference.
    """
    url = normalize_database_url(settings.DATABASE_URL)

    logger.debug(
        f"Creating database engine for {make_url(url).render_as_string(hide_password=True)}"
    )
    return create_engine(url, echo=False, **engine_options(settings, url))


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory bound to the given engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def init_db(engine: Engine) -> None:
    """
    Provision the schema. Safe to run on every start.

    - Verifies connectivity
    - Creates the messages table if it does not exist
    - Adds created_at/updated_at to tables created by older releases
    - Creates the descending created_at index if it does not exist

    Any failure is fatal: the error is logged and re-raised so the
    application never starts serving against a broken schema.
    """
    # Import models to register them with Base.metadata
    from app.models import Message

    try:
        logger.info("Testing database connection...")
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=engine)

        _add_missing_timestamp_columns(engine, Message.__tablename__)

        for index in Message.__table__.indexes:
            index.create(bind=engine, checkfirst=True)

        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.critical(f"Database initialization failed: {e}")
        raise


def _add_missing_timestamp_columns(engine: Engine, table_name: str) -> None:
    existing = {column["name"] for column in inspect(engine).get_columns(table_name)}
    missing = [name for name in TIMESTAMP_COLUMNS if name not in existing]
    if not missing:
        return

    column_type = DateTime(timezone=True).compile(dialect=engine.dialect)
    is_sqlite = engine.dialect.name == "sqlite"

    with engine.begin() as conn:
        for column in missing:
            logger.info(f"Adding missing column {table_name}.{column}")
            if is_sqlite:
                # SQLite rejects non-constant defaults in ADD COLUMN, so backfill instead
                conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {column} {column_type}"))
                conn.execute(text(
                    f"UPDATE {table_name} SET {column} = CURRENT_TIMESTAMP WHERE {column} IS NULL"
                ))
            else:
                conn.execute(text(
                    f"ALTER TABLE {table_name} ADD COLUMN IF NOT EXISTS {column} "
                    f"{column_type} DEFAULT CURRENT_TIMESTAMP"
                ))


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session from the application's session factory and ensures
    it's closed after use.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def check_db_health(engine: Engine) -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and the messages table exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            if not inspect(conn).has_table("messages"):
                logger.error("Database schema not applied: 'messages' table not found")
                return False
        logger.debug("Database health check passed")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Repository Functions
# =============================================================================

def validate_message_fields(
    name: Optional[str],
    email: Optional[str],
    message: Optional[str],
) -> Tuple[str, str, str]:
    """
    Check and trim the submitted fields.

    Returns:
        Tuple of trimmed (name, email, message)

    Raises:
        MessageValidationError: a field is missing, blank, or too long
    """
    trimmed = []
    for value in (name, email, message):
        if not isinstance(value, str) or not value.strip():
            raise MessageValidationError("All fields (name, email, message) are required")
        trimmed.append(value.strip())

    name, email, message = trimmed
    if len(name) > MAX_FIELD_LENGTH:
        raise MessageValidationError("Name must be less than 255 characters")
    if len(email) > MAX_FIELD_LENGTH:
        raise MessageValidationError("Email must be less than 255 characters")

    return name, email, message


def create_message(
    db: Session,
    name: Optional[str],
    email: Optional[str],
    message: Optional[str],
):
    """
    Validate and store a new message.

    Args:
        db: Database session
        name: Author name (required, at most 255 characters)
        email: Author email (required, at most 255 characters)
        message: Message body (required)

    Returns:
        The stored Message with its id and timestamps

    Raises:
        MessageValidationError: invalid input, nothing was written
        StorageError: the insert failed
    """
    from app.models import Message

    name, email, message = validate_message_fields(name, email, message)
    logger.info(f"Creating message from {name!r}")

    try:
        now = datetime.now(timezone.utc)
        record = Message(
            name=name,
            email=email,
            message=message,
            created_at=now,
            updated_at=now,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        logger.info(f"Message created successfully: {record.id}")
        return record

    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create message: {e}")
        raise StorageError("Failed to create message", details=str(e)) from e


def get_messages(db: Session) -> list:
    """
    Retrieve all messages, newest first.

    Returns:
        List of Message objects (empty if there are none)

    Raises:
        StorageError: the query failed
    """
    from app.models import Message

    logger.info("Querying messages")
    try:
        messages = (
            db.query(Message)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .all()
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to fetch messages: {e}")
        raise StorageError("Failed to fetch messages", details=str(e)) from e

    logger.info(f"Retrieved {len(messages)} messages")
    return messages


def _is_storable_id(message_id: int) -> bool:
    # Out-of-range ids cannot exist, and SQLite refuses to bind them at all
    return 1 <= message_id <= MAX_MESSAGE_ID


def get_message_by_id(db: Session, message_id: int):
    """
    Retrieve a message by its ID.

    Raises:
        MessageNotFoundError: no message has this id
        StorageError: the query failed
    """
    from app.models import Message

    logger.info(f"Looking up message by ID: {message_id}")
    if not _is_storable_id(message_id):
        logger.info(f"Message not found: {message_id}")
        raise MessageNotFoundError(message_id)

    try:
        result = db.query(Message).filter(Message.id == message_id).first()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to fetch message {message_id}: {e}")
        raise StorageError("Failed to fetch message", details=str(e)) from e

    if result is None:
        logger.info(f"Message not found: {message_id}")
        raise MessageNotFoundError(message_id)
    return result


def delete_message(db: Session, message_id: int) -> bool:
    """
    Delete a message by its ID.

    Returns:
        True if a row was removed, False if no message had this id

    Raises:
        StorageError: the delete failed
    """
    from app.models import Message

    logger.info(f"Deleting message: {message_id}")
    if not _is_storable_id(message_id):
        logger.info(f"Message {message_id} was already absent")
        return False

    try:
        deleted = (
            db.query(Message)
            .filter(Message.id == message_id)
            .delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete message {message_id}: {e}")
        raise StorageError("Failed to delete message", details=str(e)) from e

    logger.info(f"Message {message_id} {'deleted' if deleted else 'was already absent'}")
    return deleted > 0


# =============================================================================
# Diagnostics
# =============================================================================

def get_database_status(db: Session) -> dict:
    """
    Report server time, server version and the number of stored messages.

    Raises:
        StorageError: the database could not be queried
    """
    from app.models import Message

    try:
        server_time = db.execute(select(func.current_timestamp())).scalar()
        count = db.query(func.count(Message.id)).scalar() or 0
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database connection failed: {e}")
        raise StorageError("Database connection failed", details=str(e)) from e

    version_info = db.get_bind().dialect.server_version_info or ()
    return {
        "time": server_time,
        "version": ".".join(str(part) for part in version_info),
        "count": count,
    }


def describe_schema(engine: Engine) -> dict:
    """
    List the tables in the database and the columns of the messages table.

    Raises:
        StorageError: the database could not be inspected
    """
    try:
        inspector = inspect(engine)
        tables = inspector.get_table_names()
        columns = inspector.get_columns("messages") if "messages" in tables else []
    except SQLAlchemyError as e:
        logger.error(f"Error checking tables: {e}")
        raise StorageError("Failed to check tables", details=str(e)) from e

    logger.debug(f"Available tables: {tables}")
    return {
        "tables": [{"table_name": name} for name in tables],
        "messages_columns": [
            {
                "column_name": column["name"],
                "data_type": str(column["type"]),
                "is_nullable": "YES" if column["nullable"] else "NO",
            }
            for column in columns
        ],
    }
