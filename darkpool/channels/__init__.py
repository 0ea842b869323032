"""
Dark Pool State Channels

Signed off-chain balance records with a time-locked emergency exit.
"""

from .ledger import (
    Channel,
    ChannelLedger,
    EmergencyRequest,
    PayoutStatus,
    channel_update_digest,
    sign_channel_update,
)

__all__ = [
    "Channel",
    "ChannelLedger",
    "EmergencyRequest",
    "PayoutStatus",
    "channel_update_digest",
    "sign_channel_update",
]
