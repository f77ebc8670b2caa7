"""
File Module - Upload Decoding and Storage

Extracts uploaded files from raw multipart bodies and stores them on disk.
"""

from .multipart import (
    ParsedUpload, MultipartError, decode, parse_boundary, find_sequence,
    find_delimiter,
)
from .storage import UploadStorage, sanitize_file_name, DEFAULT_FILE_NAME

__all__ = [
    'ParsedUpload',
    'MultipartError',
    'decode',
    'parse_boundary',
    'find_sequence',
    'find_delimiter',
    'UploadStorage',
    'sanitize_file_name',
    'DEFAULT_FILE_NAME',
]
