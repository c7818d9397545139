from __future__ import annotations

STATS_LOOKBACK_DAYS = 30
UPCOMING_EXPIRY_DEFAULT_DAYS = 7
HISTORY_DEFAULT_LIMIT = 50
SECONDS_PER_DAY = 86400
# Warnings cover everything expiring before the end of the next UTC day.
WARNING_WINDOW_DAYS = 2
