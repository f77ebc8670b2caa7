"""
Registry Module - Share Codes and File Offers

Allocates share codes and maps them to stored files.
"""

from .codes import CODE_MIN, CODE_MAX, generate_code, is_valid_code, parse_code
from .offers import FileOffer, FileRegistry, RegistryFullError

__all__ = [
    'CODE_MIN',
    'CODE_MAX',
    'generate_code',
    'is_valid_code',
    'parse_code',
    'FileOffer',
    'FileRegistry',
    'RegistryFullError',
]
