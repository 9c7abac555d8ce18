from __future__ import annotations
import os
from chainweave_server.core.config import settings
from chainweave_server.core.errors import ConfigError
from chainweave_server.core.logging_config import configure_logging


def _run_migrations():
    try:
        from chainweave_server.core.migrations import run_migrations
        run_migrations()
    except Exception as e:
        print(f"[entrypoint] migrations failed: {e}", flush=True)
        raise


def main():
    configure_logging(settings.log_level)
    print(f"[entrypoint] starting version={settings.version} db={settings.database_url} log_level={settings.log_level}", flush=True)
    print(f"[entrypoint] data_dir={settings.data_dir} chain_enabled={settings.chain_enabled} chain_id={settings.chain_id}", flush=True)
    for line in settings.diagnostics or []:
        print(f"[entrypoint][config] {line}", flush=True)
    # refuse to start half-configured; the lifespan checks again for other launchers
    try:
        settings.validate_chain()
    except ConfigError as e:
        print(f"[entrypoint] configuration error: {e}", flush=True)
        raise SystemExit(2)
    _run_migrations()
    print('[entrypoint] migrations complete', flush=True)
    import uvicorn
    from uvicorn.config import LOGGING_CONFIG
    host = os.getenv('CHAINWEAVE_HOST', '0.0.0.0')
    port = int(os.getenv('CHAINWEAVE_PORT', '5000'))
    print(f"[entrypoint] launching uvicorn on {host}:{port}", flush=True)
    try:
        uvicorn.run(
            'chainweave_server.main:app',
            host=host,
            port=port,
            reload=False,
            log_level=settings.log_level.lower(),
            log_config=LOGGING_CONFIG,
        )
    except BaseException as exc:  # catch SystemExit too
        import traceback
        print(f"[entrypoint] uvicorn crashed: {exc}", flush=True)
        traceback.print_exc()
        raise
    finally:
        print("[entrypoint] uvicorn stopped", flush=True)


if __name__ == '__main__':  # pragma: no cover
    main()
