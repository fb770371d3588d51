"""Monthly per-provider request counter backed by the ``api_requests`` table."""

import logging

from grubstars.core.db import transaction

logger = logging.getLogger(__name__)

# Counters reset one calendar month after the last reset, matching the
# providers' free-tier billing windows.
_RESET_EXPIRED = """
UPDATE api_requests
SET request_count = 0, reset_at = NOW(), updated_at = NOW()
WHERE adapter = %(adapter)s AND reset_at + INTERVAL '1 month' <= NOW();
"""

_SELECT_COUNT = "SELECT request_count FROM api_requests WHERE adapter = %(adapter)s;"

_INCREMENT = """
INSERT INTO api_requests (adapter, request_count, reset_at, updated_at)
VALUES (%(adapter)s, %(amount)s, NOW(), NOW())
ON CONFLICT (adapter) DO UPDATE SET
    request_count = api_requests.request_count + EXCLUDED.request_count,
    updated_at = NOW()
RETURNING request_count;
"""


class RequestCounter:
    """Shared request tally used by adapters to enforce their quotas."""

    def get_count(self, adapter: str) -> int:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(_RESET_EXPIRED, {"adapter": adapter})
                cur.execute(_SELECT_COUNT, {"adapter": adapter})
                row = cur.fetchone()
        return row[0] if row else 0

    def increment(self, adapter: str, amount: int = 1) -> int:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(_RESET_EXPIRED, {"adapter": adapter})
                cur.execute(_INCREMENT, {"adapter": adapter, "amount": amount})
                row = cur.fetchone()
        logger.debug("Request count for %s is now %s", adapter, row[0])
        return row[0]
