"""Alembic environment; reads the database URL and metadata from inbox_buckets."""
import os
import sys

# backend/ holds the inbox_buckets package
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)
os.chdir(backend_dir)

from logging.config import fileConfig
from alembic import context
from sqlalchemy.engine.url import make_url
from inbox_buckets.config import settings
from inbox_buckets.database import make_engine
from inbox_buckets.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
is_sqlite = make_url(settings.database_url).drivername.startswith("sqlite")


def run_migrations_offline():
    """Emit SQL without a live connection."""
    url = make_url(settings.database_url)
    context.configure(
        url=url.render_as_string(hide_password=False),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    # Same engine factory as the app, so driver selection and SQLite pragmas match.
    connectable = make_engine(settings.database_url)
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=is_sqlite,
        )
        with context.begin_transaction():
            context.run_migrations()
    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
