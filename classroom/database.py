import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker

from classroom.core import config


engine = create_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

logger = logging.getLogger(__name__)

SESSION_OVERLAP_CONSTRAINT = 'classroom_sessions_no_overlap_per_instructor'
# Scheduled sessions of one instructor may not share any instant of [start, end).
ADD_OVERLAP_CONSTRAINT_SQL = text(
    f"""
    ALTER TABLE classroom_sessions
      ADD CONSTRAINT {SESSION_OVERLAP_CONSTRAINT}
      EXCLUDE USING gist (
        instructor_id WITH =,
        tsrange(start_time, end_time, '[)') WITH &&
      )
      WHERE (status = 'scheduled')
    """
)

_schema_lock = Lock()
_classroom_session_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_classroom_session_schema() -> None:
    global _classroom_session_schema_checked

    if _classroom_session_schema_checked:
        return

    with _schema_lock:
        if _classroom_session_schema_checked:
            return

        inspector = inspect(engine)

        if 'classroom_sessions' not in inspector.get_table_names():
            _classroom_session_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('classroom_sessions')}
        migration_steps = [
            ('status', "ALTER TABLE classroom_sessions ADD COLUMN status VARCHAR DEFAULT 'scheduled'"),
            ('created_at', 'ALTER TABLE classroom_sessions ADD COLUMN created_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_classroom_sessions_instructor_time '
                    'ON classroom_sessions(instructor_id, start_time, end_time)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_classroom_sessions_org_start ON classroom_sessions(org_id, start_time)')
            )

        if engine.dialect.name == 'postgresql':
            install_overlap_constraint(engine)

        _classroom_session_schema_checked = True


def install_overlap_constraint(bind) -> bool:
    """Add the per-instructor exclusion constraint; False when existing rows violate it."""
    try:
        with bind.begin() as connection:
            exists = connection.execute(
                text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
                {'name': SESSION_OVERLAP_CONSTRAINT},
            ).first()
            if exists:
                return True

            connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
            connection.execute(ADD_OVERLAP_CONSTRAINT_SQL)
    except IntegrityError:
        logger.error(
            'Could not add %s: classroom_sessions already holds overlapping scheduled sessions. '
            'Cancel the duplicates and restart; until then only the booking pre-check prevents double-booking.',
            SESSION_OVERLAP_CONSTRAINT,
        )
        return False
    return True
