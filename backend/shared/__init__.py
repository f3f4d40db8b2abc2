"""
Shared module for common utilities across the REST API and the CLI.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (Pydantic)
  - logging.py: Structured logging
  - constants.py: Order/payment states, reason codes, limits

- shared.infrastructure: Database, Redis and correlation ids
  - db.py: SQLAlchemy sessions, safe_commit()
  - redis/: async Redis pool, key/TTL constants
  - correlation.py: X-Request-ID middleware and log filter

- shared.security: Rate limiting (slowapi)

- shared.utils: Utilities
  - exceptions.py: HTTP exceptions with auto-logging
  - schemas.py: Shared Pydantic schemas
  - polling.py: Fixed-interval client polling primitive

IMPORT EXAMPLES:
    from shared.infrastructure.db import get_db, safe_commit
    from shared.config.settings import settings
    from shared.config.constants import OrderStatus, PaymentStatus
    from shared.utils.exceptions import NotFoundError, ConflictError
    from shared.utils.polling import poll_until
"""
