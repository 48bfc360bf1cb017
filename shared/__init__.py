"""
Shared module for common utilities used by the session core and the WS Gateway.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (pydantic-settings)
  - logging.py: Structured logging and audit helpers
  - constants.py: Roles, limits, defaults

- shared.infrastructure: Storage and tracing
  - db.py: SQLAlchemy engine/sessions, safe_commit()
  - redis_pool.py: Async Redis pool
  - correlation.py: Correlation IDs for logs

IMPORT EXAMPLES:
    from shared.config.settings import settings
    from shared.config.constants import Roles, Limits
    from shared.config.logging import get_logger
    from shared.infrastructure.db import get_db_context, safe_commit
"""
