from pathlib import Path
import os
import re

from pydantic import BaseModel

from chainweave_server import __version__
from chainweave_server.core.errors import ConfigError

# Optionally load a config.env file for local development so secrets (the
# backend signing key in particular) stay out of shell history and compose files.
try:
    from dotenv import load_dotenv
    cfg_override = os.getenv('CHAINWEAVE_CONFIG_FILE')
    candidates = []
    if cfg_override:
        candidates.append(Path(cfg_override))
    candidates.append(Path.cwd() / 'config.env')
    candidates.append(Path.cwd() / 'backend' / 'config.env')

    for p in candidates:
        if p and p.exists():
            load_dotenv(str(p))
            break
except ImportError:
    pass

"""Central configuration.

Env vars:
  CHAINWEAVE_DATA_DIR        - directory for writable application data (created)
  CHAINWEAVE_DATABASE_URL    - SQLAlchemy URL (defaults to sqlite in DATA dir)
  CHAINWEAVE_LOG_LEVEL       - DEBUG / INFO / WARNING / ERROR
  CHAINWEAVE_API_KEY         - shared key guarding admin routes (optional)
  CHAINWEAVE_CHAIN_ENABLED   - set to false to run without a chain connection
  ZETACHAIN_RPC_URL, ZETACHAIN_CHAIN_ID, CHAINWEAVE_CONTRACT_ADDRESS,
  BACKEND_PRIVATE_KEY        - required when the chain is enabled
"""

_ADDRESS_RE = re.compile(r'^0x[a-fA-F0-9]{40}$')
_PRIVATE_KEY_RE = re.compile(r'^(0x)?[a-fA-F0-9]{64}$')

_diagnostics: list[str] = []


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}")


def _resolve_data_dir() -> Path:
    env_data_dir = os.getenv('CHAINWEAVE_DATA_DIR')
    for cand in [env_data_dir, str(Path.cwd() / 'data')]:
        if not cand:
            continue
        p = Path(cand)
        try:
            p.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            _diagnostics.append(f"candidate_failed path={p} err={e}")
            continue
        _diagnostics.append(f"selected_data_dir={p}")
        return p
    raise ConfigError('no writable data directory available')


class Settings(BaseModel):
    app_name: str = 'ChainWeave Backend'
    api_v1_prefix: str = '/api/v1'
    version: str = __version__
    data_dir: Path | None = None
    database_url: str = 'sqlite:///chainweave.db'
    db_pool_size: int = 5
    db_echo: bool = False
    log_level: str = 'INFO'
    api_key: str | None = None

    # chain
    chain_enabled: bool = True
    rpc_url: str | None = None
    chain_id: int = 7001
    contract_address: str | None = None
    backend_private_key: str | None = None
    rpc_timeout: float = 30.0
    gas_margin_percent: int = 20

    # listener / reconciliation
    poll_interval: float = 5.0
    confirmations: int = 1
    start_block: int | None = None
    max_block_range: int = 2000
    sweep_interval: float = 60.0
    reconcile_max_attempts: int = 10

    # request validation
    min_prompt_length: int = 10
    max_prompt_length: int = 500

    # processing
    process_concurrency: int = 3

    diagnostics: list[str] | None = None

    def validate_chain(self) -> None:
        """Fail fast when the chain is enabled but not fully configured."""
        if not self.chain_enabled:
            return
        problems: list[str] = []
        if not self.rpc_url:
            problems.append('ZETACHAIN_RPC_URL is required')
        if not self.contract_address:
            problems.append('CHAINWEAVE_CONTRACT_ADDRESS is required')
        elif not _ADDRESS_RE.match(self.contract_address):
            problems.append('CHAINWEAVE_CONTRACT_ADDRESS is not a valid address')
        if not self.backend_private_key:
            problems.append('BACKEND_PRIVATE_KEY is required')
        elif not _PRIVATE_KEY_RE.match(self.backend_private_key):
            problems.append('BACKEND_PRIVATE_KEY is not a 32-byte hex key')
        if self.gas_margin_percent < 0:
            problems.append('GAS_MARGIN_PERCENT must be >= 0')
        if problems:
            raise ConfigError('; '.join(problems))


def load_settings() -> Settings:
    data_dir = _resolve_data_dir()
    database_url = os.getenv('CHAINWEAVE_DATABASE_URL') or f"sqlite:///{data_dir / 'chainweave.db'}"
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        db_pool_size=_env_int('CHAINWEAVE_DB_POOL_SIZE', 5),
        db_echo=_env_flag('CHAINWEAVE_DB_ECHO'),
        log_level=os.getenv('CHAINWEAVE_LOG_LEVEL', 'INFO'),
        version=os.getenv('CHAINWEAVE_VERSION', __version__),
        api_key=os.getenv('CHAINWEAVE_API_KEY') or None,
        chain_enabled=_env_flag('CHAINWEAVE_CHAIN_ENABLED', True),
        rpc_url=os.getenv('ZETACHAIN_RPC_URL') or None,
        chain_id=_env_int('ZETACHAIN_CHAIN_ID', 7001),
        contract_address=os.getenv('CHAINWEAVE_CONTRACT_ADDRESS') or None,
        backend_private_key=os.getenv('BACKEND_PRIVATE_KEY') or None,
        rpc_timeout=_env_float('RPC_TIMEOUT', 30.0),
        gas_margin_percent=_env_int('GAS_MARGIN_PERCENT', 20),
        poll_interval=_env_float('CHAIN_POLL_INTERVAL', 5.0),
        confirmations=_env_int('CHAIN_CONFIRMATIONS', 1),
        start_block=_env_int('CHAIN_START_BLOCK', None),
        max_block_range=_env_int('CHAIN_MAX_BLOCK_RANGE', 2000),
        sweep_interval=_env_float('RECONCILE_SWEEP_INTERVAL', 60.0),
        reconcile_max_attempts=_env_int('RECONCILE_MAX_ATTEMPTS', 10),
        min_prompt_length=_env_int('MIN_PROMPT_LENGTH', 10),
        max_prompt_length=_env_int('MAX_PROMPT_LENGTH', 500),
        process_concurrency=_env_int('PROCESS_CONCURRENCY', 3),
        diagnostics=_diagnostics,
    )


settings = load_settings()
