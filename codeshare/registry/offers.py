"""
File Offer Registry

Design Decision: Code Allocation
================================

Options Considered:
1. Generate, check membership, then insert
   - Two concurrent offers can pick the same code between check and insert
   
2. Sequential counter
   - Race free, but codes become guessable and wrap into ports in use
   
3. Random candidate + atomic insert-if-absent, retried on conflict
   - Uniform codes, no race

Decision: Random candidate with insert-if-absent under a lock
- The check and the insert are one step (dict.setdefault while holding the lock)
- A threading.Lock rather than asyncio.Lock so the registry is also safe
  for callers outside the event loop (sync endpoints, the CLI)
- Offers carry a creation time so stale ones can be swept
"""

import time
import threading
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .codes import CODE_MIN, CODE_MAX, generate_code

logger = logging.getLogger(__name__)


class RegistryFullError(RuntimeError):
    """Raised when every code in the range already has an active offer."""


@dataclass
class FileOffer:
    """A file registered for one future download."""
    code: int
    path: Path
    name: str
    owned: bool = True  # blob belongs to us and is deleted on eviction
    created_at: float = field(default_factory=time.time)
    
    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.created_at


class FileRegistry:
    """
    Maps share codes to stored files.
    
    All mutations and lookups hold the same lock, so concurrent offers
    never hand out the same code.
    """
    
    def __init__(self, code_min: int = CODE_MIN, code_max: int = CODE_MAX):
        if code_min > code_max:
            raise ValueError(f"Empty code range: {code_min}-{code_max}")
        self.code_min = code_min
        self.code_max = code_max
        self._offers: Dict[int, FileOffer] = {}
        self._lock = threading.Lock()
    
    @property
    def capacity(self) -> int:
        return self.code_max - self.code_min + 1
    
    def __len__(self) -> int:
        with self._lock:
            return len(self._offers)
    
    def __contains__(self, code: int) -> bool:
        with self._lock:
            return code in self._offers
    
    def offer(self, path: Path, name: Optional[str] = None,
              owned: bool = True) -> int:
        """
        Register a file and allocate a unique code for it.
        
        Args:
            path: Absolute path of the stored file
            name: Display name announced to the downloader (default: file name)
            owned: Whether the file may be deleted once the offer is evicted
        
        Returns:
            The allocated share code
        
        Raises:
            RegistryFullError: if no code in the range is free
        """
        path = Path(path)
        name = name or path.name
        
        with self._lock:
            if len(self._offers) >= self.capacity:
                raise RegistryFullError(
                    f"All {self.capacity} share codes are in use"
                )
            while True:
                code = generate_code(self.code_min, self.code_max)
                offer = FileOffer(code=code, path=path, name=name, owned=owned)
                # Insert-if-absent; retry with a new candidate on conflict
                if self._offers.setdefault(code, offer) is offer:
                    break
        
        logger.debug(f"Offered {name} under code {code}")
        return code
    
    def lookup(self, code: int) -> Optional[Path]:
        """Get the stored file path for a code, or None if not offered."""
        offer = self.get(code)
        return offer.path if offer else None
    
    def get(self, code: int) -> Optional[FileOffer]:
        """Get the full offer for a code, or None if not offered."""
        with self._lock:
            return self._offers.get(code)
    
    def remove(self, code: int,
               expected: Optional[FileOffer] = None) -> Optional[FileOffer]:
        """
        Evict an offer. Returns the evicted offer, if any.
        
        With `expected`, the code is only evicted while it still maps to
        that exact offer; a code reissued to a newer offer is left alone.
        """
        with self._lock:
            current = self._offers.get(code)
            if current is None or (expected is not None and current is not expected):
                return None
            return self._offers.pop(code)
    
    def expire(self, ttl: float, now: Optional[float] = None,
               keep: Iterable[int] = ()) -> List[FileOffer]:
        """
        Evict every offer older than `ttl` seconds, except codes in `keep`.
        
        Returns:
            The evicted offers
        """
        now = now if now is not None else time.time()
        with self._lock:
            keep = set(keep)
            stale = [
                o for o in self._offers.values()
                if o.age(now) > ttl and o.code not in keep
            ]
            for offer in stale:
                del self._offers[offer.code]
        
        if stale:
            logger.info(f"Expired {len(stale)} unclaimed offers")
        return stale
    
    def list_offers(self) -> List[FileOffer]:
        with self._lock:
            return sorted(self._offers.values(), key=lambda o: o.created_at)
