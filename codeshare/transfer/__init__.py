"""
Transfer Module - One-Shot Listeners and the Download Bridge

Serves each offered file to exactly one TCP peer and relays it back out
over HTTP.
"""

from .protocol import (
    TransferError, encode_header, parse_header, read_header,
    guess_content_type, CONTENT_TYPES,
)
from .listener import (
    OneShotListener, ListenerPool, ListenerState, SessionOutcome,
    PortConflictError, CapacityError, serve,
)
from .bridge import DownloadBridge, DownloadResult

__all__ = [
    'TransferError',
    'encode_header',
    'parse_header',
    'read_header',
    'guess_content_type',
    'CONTENT_TYPES',
    'OneShotListener',
    'ListenerPool',
    'ListenerState',
    'SessionOutcome',
    'PortConflictError',
    'CapacityError',
    'serve',
    'DownloadBridge',
    'DownloadResult',
]
