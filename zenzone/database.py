from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from zenzone.core import config
from zenzone.core.errors import ServiceUnavailable


def _engine_options(url: str) -> dict:
    if url.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}
    return {'pool_pre_ping': True}


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_message_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_database_ready() -> None:
    try:
        ensure_message_schema()
    except SQLAlchemyError as exc:
        raise ServiceUnavailable() from exc


def init_db() -> None:
    # Imported for their side effect of registering tables on Base.metadata.
    from zenzone.models import analytics, appointment, message, user  # noqa: F401

    Base.metadata.create_all(bind=engine)
    ensure_message_schema()


def ensure_message_schema() -> None:
    global _message_schema_checked

    if _message_schema_checked:
        return

    with _schema_lock:
        if _message_schema_checked:
            return

        inspector = inspect(engine)

        if 'messages' not in inspector.get_table_names():
            _message_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('messages')}
        migration_steps = [
            ('attachments', 'ALTER TABLE messages ADD COLUMN attachments JSON'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_messages_pair_time ON messages(sender_id, recipient_id, timestamp)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_messages_appointment_time ON messages(appointment_id, timestamp)')
            )

        _message_schema_checked = True
