"""
Constants used across the notification and bracket services.
"""

import os

# Bracket sizes an administrator can configure for a tournament
VALID_PLAYER_COUNTS = (4, 8, 16, 32, 64)
DEFAULT_PLAYER_COUNT = 8  # Used when a tournament record has no player count

# Document keys for persisted draw rounds
ROUND_KEY_PREFIX = "round_"
CHAMPION_KEY = "champion"

# Upper bound for one unread fan-out branch before it counts as failed
UNREAD_BRANCH_TIMEOUT_SECONDS = float(os.getenv("UNREAD_BRANCH_TIMEOUT_SECONDS", "8"))

# Maximum length of a chat message or announcement
MAX_MESSAGE_LENGTH = 2000
