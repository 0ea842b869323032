"""
Dark Pool Constants

This module consolidates global protocol constants and environment
configuration used throughout the codebase. Constants are organized by
category for easy reference and maintenance.
"""
import ast
from decimal import Decimal
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

NODE_DEFAULTS = {
    'DARKPOOL_NODE_HOST':              '127.0.0.1',
    'DARKPOOL_NODE_PORT':              '3001',
    'DARKPOOL_ENGINE_PRIVATE_KEY':     '',
}

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_OUTPUT':                 'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# ==================================================================================
# CORE PROTOCOL CONSTANTS
# ==================================================================================
NODE_VERSION = '1.0.0'
TOKEN_DECIMALS = 18
ZERO_ADDRESS = '0x' + '00' * 20
ZERO_COMMITMENT = '0x' + '00' * 32


# ==================================================================================
# COMMIT-REVEAL WINDOWS (seconds)
# ==================================================================================
COMMITMENT_WINDOW = 300   # cancellation allowed for 5 minutes after commit
REVEAL_WINDOW = 600       # reveal (and book residency) deadline, 10 minutes after commit
MIN_COMMITMENT_WINDOW = 60
MIN_REVEAL_WINDOW = 300
MAX_CLOCK_SKEW = 30       # client timestamps may lead the engine clock by this much


# ==================================================================================
# ORDER LIMITS
# ==================================================================================
MIN_ORDER_SIZE = Decimal('0.1')
MAX_ORDER_SIZE = Decimal('1000')
MAX_PENDING_REVEALS = 10_000


# ==================================================================================
# EPOCH SCHEDULING
# ==================================================================================
EPOCH_INTERVAL = 1.0      # seconds between matching passes
RECENT_MATCHES_KEPT = 1000


# ==================================================================================
# STATE CHANNELS
# ==================================================================================
MIN_CHANNEL_BALANCE = Decimal('0.001')
MAX_CHANNEL_BALANCE = Decimal('1000')
EMERGENCY_WITHDRAWAL_DELAY = 24 * 60 * 60  # 24 hours challenge period
MAX_UPDATE_AGE = 300      # signed channel updates older than this are refused


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
DEFAULTS = NODE_DEFAULTS | LOGGER_DEFAULTS
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Avoids exceptions by only calling ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v

for key, default_raw in DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
