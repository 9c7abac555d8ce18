from __future__ import annotations

import logging

# Per-poll RPC chatter that would otherwise flood DEBUG output.
_POLL_SNIPPETS: tuple[str, ...] = (
    "eth_blockNumber",
    "eth_getLogs",
    "Making request HTTP",
    "Getting response HTTP",
)

_NOISY_LOGGERS: tuple[str, ...] = (
    "web3",
    "web3.providers",
    "web3.providers.AsyncHTTPProvider",
    "web3.manager.RequestManager",
    "aiohttp",
    "aiohttp.access",
    "urllib3",
    "urllib3.connectionpool",
    "websockets",
    "httpx",
)


class _SuppressPollFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging hook
        try:
            message = record.getMessage()
        except Exception:
            return True
        for snippet in _POLL_SNIPPETS:
            if snippet in message:
                return False
        return True


_POLL_FILTER = _SuppressPollFilter()


def _ensure_filter(logger: logging.Logger) -> None:
    for existing in logger.filters:
        if existing is _POLL_FILTER:
            return
    logger.addFilter(_POLL_FILTER)


def _ensure_stream_handler(logger: logging.Logger) -> None:
    handler_exists = any(isinstance(h, logging.StreamHandler) for h in logger.handlers)
    if handler_exists:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter('[%(levelname)s] %(name)s: %(message)s'))
    logger.addHandler(handler)


def configure_logging(level_name: str | None = None) -> None:
    """Configure the root logger and quiet the RPC client loggers."""

    lvl = getattr(logging, (level_name or 'INFO').upper(), None)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(lvl)
    _ensure_stream_handler(root_logger)
    _ensure_filter(root_logger)

    for noisy_name in _NOISY_LOGGERS:
        logger = logging.getLogger(noisy_name)
        if logger.level < logging.INFO:
            logger.setLevel(logging.INFO)
        logger.propagate = False
        _ensure_filter(logger)

    for name in ("uvicorn", "uvicorn.error"):
        _ensure_filter(logging.getLogger(name))
