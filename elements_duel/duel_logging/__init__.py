"""
Structured logging for Elements Duel.

JSON logs with timestamp, level, logger name and event_type. Use get_logger()
in every module so wallet, ledger and engine output aggregates consistently.
"""

from elements_duel.duel_logging.logger import get_logger, bind_account

__all__ = ["get_logger", "bind_account"]
