from logging.config import fileConfig
from alembic import context

# =========================================================
# Alembic Config
# =========================================================
config = context.config

# Set up logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# =========================================================
# Import settings and models
# =========================================================
from billing.core.config import settings
from billing.core.database import Base, build_engine
from billing.models import *  # noqa: F401,F403

# Use the declarative metadata for autogenerate
target_metadata = Base.metadata


def _database_url() -> str:
    return config.get_main_option("sqlalchemy.url") or settings.database_url


# =========================================================
# Offline migrations
# =========================================================
def run_migrations_offline():
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_database_url().startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


# =========================================================
# Online migrations
# =========================================================
def run_migrations_online():
    connectable = build_engine(_database_url())

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()

    connectable.dispose()


# =========================================================
# Entry point
# =========================================================
if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
