"""
Fixed rules of the token gate.

These values define how a verification challenge is issued and matched.
Changing them changes who can get in and MUST be announced to holders.
"""

# How long a verification amount stays valid
VERIFICATION_WINDOW_MINUTES = 30

# Challenge amounts are rounded to this many fractional digits
CHALLENGE_DECIMALS = 9

# Absolute tolerance when comparing an observed transfer to the challenge amount
MATCH_TOLERANCE = 0.000001

# How many recent signatures of the holder wallet are scanned per /confirm
DEFAULT_SIGNATURE_LIMIT = 25

# Only the first few per-signature diagnostics are logged on a miss
DIAGNOSTIC_SAMPLE_SIZE = 10

# Telegram rejects messages above 4096 chars; leave room for markup
TELEGRAM_MESSAGE_CHARACTER_LIMIT = 3500

PUBLIC_MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
TELEGRAM_API_URL = "https://api.telegram.org"
