from __future__ import annotations
import os
import sys
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
load_dotenv()

from app.config.settings import load_settings  # noqa: E402
from app.models.base import Base  # noqa: E402
from app.models import workflow, approval, payment, audit  # noqa: E402,F401  (register tables)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Same URL the app uses unless alembic -x url=... overrides it
config.set_main_option('sqlalchemy.url', context.get_x_argument(as_dictionary=True).get('url')
                       or load_settings()['DATABASE_URL'])

# SQLite needs batch mode for ALTER TABLE
MIGRATION_OPTIONS = dict(target_metadata=Base.metadata, render_as_batch=True, compare_type=True)


def run_migrations_offline():
    context.configure(url=config.get_main_option('sqlalchemy.url'), literal_binds=True, **MIGRATION_OPTIONS)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    engine = engine_from_config(config.get_section(config.config_ini_section), prefix='sqlalchemy.',
                                poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, **MIGRATION_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
