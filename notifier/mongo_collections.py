# notifier/mongo_collections.py

# Default names; the watched ones can be overridden through Settings.
USERS = "users"
BALANCE_TRANSACTIONS = "balancetransactions"
TRANSACTIONS = "transactions"
TRADEABLES = "tradeables"
SMS_LOGS = "sms_logs"
RESUME_TOKENS = "resume_tokens"

# Checkpoint names, one per watched stream.
STREAM_BALANCE_TX = "tx"
STREAM_USERS = "users"
STREAM_TRANSACTIONS = "transactions"

# Notes:
# - balancetransactions / transactions docs reference their owner via `user` (ObjectId).
# - transactions reference the instrument via `tradeable` (ObjectId into tradeables).
# - users.welcomeSmsSentAt is the only field this process writes on a watched collection.
