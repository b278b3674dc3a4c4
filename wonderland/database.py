from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from wonderland.core import config


def _connect_args(database_url: str) -> dict:
    # FastAPI runs sync handlers in a threadpool.
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(config.DATABASE_URL, connect_args=_connect_args(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_enrollment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_enrollment_schema(bind: Engine | None = None) -> None:
    """Bring tables created by earlier releases up to the current columns and indexes."""
    global _enrollment_schema_checked

    if _enrollment_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _enrollment_schema_checked:
            return

        inspector = inspect(bind)
        table_names = set(inspector.get_table_names())

        migration_steps = {
            'users': [
                ('students', 'ALTER TABLE users ADD COLUMN students INTEGER'),
                ('photo_url', 'ALTER TABLE users ADD COLUMN photo_url VARCHAR'),
            ],
            'classes': [
                ('enrolled', 'ALTER TABLE classes ADD COLUMN enrolled INTEGER DEFAULT 0'),
                ('status', "ALTER TABLE classes ADD COLUMN status VARCHAR DEFAULT 'pending'"),
            ],
            'payments': [
                ('transaction_id', 'ALTER TABLE payments ADD COLUMN transaction_id VARCHAR'),
            ],
        }
        index_statements = {
            'classes': [
                'CREATE INDEX IF NOT EXISTS idx_classes_status_enrolled ON classes(status, enrolled)',
            ],
            'users': [
                'CREATE INDEX IF NOT EXISTS idx_users_role_students ON users(role, students)',
            ],
            'payments': [
                'CREATE UNIQUE INDEX IF NOT EXISTS idx_payments_selected_class ON payments(selected_class_id)',
                'CREATE UNIQUE INDEX IF NOT EXISTS idx_payments_transaction ON payments(transaction_id)',
                'CREATE INDEX IF NOT EXISTS idx_payments_student ON payments(student_email)',
            ],
        }

        existing_columns_by_table = {
            table_name: {column['name'] for column in inspector.get_columns(table_name)}
            for table_name in migration_steps
            if table_name in table_names
        }

        with bind.begin() as connection:
            for table_name, existing_columns in existing_columns_by_table.items():
                for column_name, statement in migration_steps[table_name]:
                    if column_name not in existing_columns:
                        connection.execute(text(statement))
            for table_name, statements in index_statements.items():
                if table_name not in table_names:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        _enrollment_schema_checked = True
