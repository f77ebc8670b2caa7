"""
Share Code Utilities

A share code doubles as the TCP port of the one-shot listener serving
the offer, so codes are drawn from the IANA dynamic port range
(49152-65535) where nothing registered should be listening.
"""

import secrets

CODE_MIN = 49152
CODE_MAX = 65535


def generate_code(code_min: int = CODE_MIN, code_max: int = CODE_MAX) -> int:
    """Draw a uniformly random code in [code_min, code_max]."""
    if code_min > code_max:
        raise ValueError(f"Empty code range: {code_min}-{code_max}")
    return code_min + secrets.randbelow(code_max - code_min + 1)


def is_valid_code(code: int, code_min: int = CODE_MIN, code_max: int = CODE_MAX) -> bool:
    return code_min <= code <= code_max


def parse_code(value: str) -> int:
    """
    Parse a share code from its string form.
    
    Raises:
        ValueError: if the value is not a decimal integer
    """
    value = value.strip()
    if not value.isdigit():
        raise ValueError(f"Invalid share code: {value!r}")
    return int(value)
