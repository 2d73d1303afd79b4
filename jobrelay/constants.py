"""Shared constants for jobrelay."""

# Worker requests older than this are treated as replays.
SIGNATURE_FRESHNESS_SECONDS = 5 * 60

PROCESS_TOKEN_TTL_HOURS = 24
API_KEY_TTL_DAYS = 90

HEARTBEAT_INTERVAL_SECONDS = 30.0
COMMAND_MIN_INTERVAL_SECONDS = 10.0

AUTOMATION_APPLICATION = "automation"
AUTOMATION_PERMISSION = "automation"
REFRESH_API_KEY_PERMISSION = "refresh-api-key"

HEADER_API_KEY = "X-API-Key"
HEADER_TOKEN = "X-Token"
HEADER_TIMESTAMP = "X-Timestamp"
HEADER_SIGNATURE = "X-Signature"
HEADER_USER_ID = "X-User-ID"
HEADER_PROCESS_ID = "X-Process-ID"
HEADER_ROLE = "X-Role"

REDIS_CHANNEL_PREFIX = "jobrelay:user:"
REDIS_RATE_LIMIT_PREFIX = "jobrelay:ratelimit:"
REDIS_BROADCAST_CHANNEL = "jobrelay:broadcast"

# Frames buffered per live connection before new ones are dropped.
CHANNEL_MAX_BUFFER = 1000
