"""Logging setup for ledgersync.

Usage:
    ```python
    import logging
    from ledgersync.logging import setup_logging

    setup_logging(cli_mode=True)
    logger = logging.getLogger(__name__)
    ```
"""

from .config import get_log_config_summary, setup_logging

__all__ = ["get_log_config_summary", "setup_logging"]
