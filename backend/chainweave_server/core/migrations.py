from __future__ import annotations
import os
import pathlib
from chainweave_server.core.config import settings

REQUIRED_TABLES = {'users', 'nft_requests', 'unresolved_chain_events', 'chain_cursors'}


def _alembic_ini() -> pathlib.Path:
    # Prefer the package-embedded file (works for installed wheels), then the
    # CHAINWEAVE_ALEMBIC_INI override, then the working directory.
    candidates = [pathlib.Path(__file__).resolve().parent.parent / 'alembic.ini']
    env_ini = os.getenv('CHAINWEAVE_ALEMBIC_INI')
    if env_ini:
        candidates.append(pathlib.Path(env_ini))
    candidates.append(pathlib.Path.cwd() / 'alembic.ini')
    cfg_path = next((p for p in candidates if p.exists() and p.is_file()), None)
    if not cfg_path:
        raise RuntimeError('alembic.ini not found; cannot run migrations')
    return cfg_path


def run_migrations(database_url: str | None = None):
    """Bring the schema to the latest Alembic revision.

    States handled:
    1. Empty DB: `alembic upgrade head`.
    2. Tables exist but no alembic_version (created by create_all): stamp head.
    3. alembic_version present: normal upgrade head.
    """
    from alembic.config import Config
    from alembic import command
    from sqlalchemy import create_engine, inspect

    url = database_url or settings.database_url
    cfg_path = _alembic_ini()
    cfg = Config(str(cfg_path))
    script_location = cfg_path.parent / 'alembic'
    cfg.set_main_option('script_location', str(script_location))
    cfg.set_main_option('sqlalchemy.url', url)

    print(f"[migrations] config={cfg_path} script_location={script_location}", flush=True)

    engine = create_engine(url)
    try:
        existing_tables = set(inspect(engine).get_table_names())
        print(f"[migrations] existing_tables={sorted(existing_tables)}", flush=True)

        if not existing_tables:
            print('[migrations] state=EMPTY -> upgrade head', flush=True)
            command.upgrade(cfg, 'head')
        elif 'alembic_version' not in existing_tables:
            print('[migrations] state=UNMANAGED (no alembic_version) -> stamping head', flush=True)
            command.stamp(cfg, 'head')
        else:
            print('[migrations] state=MANAGED -> upgrade head', flush=True)
            command.upgrade(cfg, 'head')

        missing = REQUIRED_TABLES - set(inspect(engine).get_table_names())
        if missing:
            raise RuntimeError(f"[migrations] missing expected tables after migration: {missing}")
    finally:
        engine.dispose()
    print('[migrations] complete; verified core tables present', flush=True)
