"""
One-Shot Transfer Listener

Design Decision: Listener Lifecycle
===================================

Options Considered:
1. One unmanaged thread per upload, blocking in accept() forever
   - Simple, but every unclaimed offer leaks a thread and a port
   
2. asyncio.start_server per code
   - Keeps accepting until closed; a second peer can slip in before
     the first connection callback runs
   
3. Raw listening socket + loop.sock_accept, closed right after one accept
   - Exactly one connection ever, explicit state machine
   - accept wait is bounded by the offer TTL

Decision: Option 3, supervised by a bounded pool
- Each listener walks IDLE -> LISTENING -> SERVING -> CLOSED
  (IDLE -> CLOSED when there is no file, LISTENING -> CLOSED on expiry)
- The pool caps outstanding listeners and binds the port before the
  share code is handed out, so a returned code is always reachable
- Accepting the one connection consumes the offer; once the session
  closes its blob is deleted, and a periodic sweep reclaims offers
  whose listener never bound
"""

import asyncio
import errno
import os
import socket
import time
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple

import aiofiles

from .protocol import encode_header
from ..file.storage import UploadStorage
from ..registry import FileOffer, FileRegistry

logger = logging.getLogger(__name__)

SEND_CHUNK_SIZE = 64 * 1024


class ListenerState(Enum):
    """Lifecycle of a one-shot listener."""
    IDLE = "idle"
    LISTENING = "listening"
    SERVING = "serving"
    CLOSED = "closed"


class SessionOutcome(Enum):
    """How a closed listener ended."""
    SERVED = "served"
    FAILED = "failed"
    EXPIRED = "expired"
    NO_FILE = "no_file"
    PORT_IN_USE = "port_in_use"
    CANCELLED = "cancelled"


class PortConflictError(OSError):
    """Raised when a share code's port is already bound."""


class CapacityError(RuntimeError):
    """Raised when the pool already runs its maximum number of listeners."""


ClosedCallback = Callable[['OneShotListener'], Awaitable[None]]


class OneShotListener:
    """
    Serves one registered file to exactly one inbound connection.
    
    Usage:
        listener = OneShotListener(registry, code)
        if await listener.open():
            await listener.serve()
    """
    
    def __init__(self, registry: FileRegistry, code: int,
                 host: str = '0.0.0.0',
                 accept_timeout: Optional[float] = None,
                 chunk_size: int = SEND_CHUNK_SIZE,
                 on_closed: Optional[ClosedCallback] = None):
        self.registry = registry
        self.code = code
        self.host = host
        self.accept_timeout = accept_timeout
        self.chunk_size = chunk_size
        self._on_closed = on_closed
        
        self.state = ListenerState.IDLE
        self.outcome: Optional[SessionOutcome] = None
        self.offer: Optional[FileOffer] = None
        self.peer: Optional[Tuple] = None
        self.bytes_sent = 0
        self.opened_at: Optional[float] = None
        self.closed_at: Optional[float] = None
        
        self._sock: Optional[socket.socket] = None
    
    def _close(self, outcome: SessionOutcome):
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        self.state = ListenerState.CLOSED
        self.outcome = outcome
        self.closed_at = time.time()
    
    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ':' in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            if os.name == 'posix':
                # Let a code be reused while an old session sits in TIME_WAIT
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.code))
            sock.listen(1)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock
    
    async def open(self) -> bool:
        """
        Look up the offer and bind the listening socket.
        
        Returns:
            True if now listening, False if the session closed instead
            (no file for the code, or the port could not be bound)
        """
        if self.state != ListenerState.IDLE:
            raise RuntimeError(f"Listener for code {self.code} is {self.state.value}")
        
        self.offer = self.registry.get(self.code)
        if self.offer is None:
            logger.warning(f"No file is associated with code {self.code}")
            self._close(SessionOutcome.NO_FILE)
            return False
        
        try:
            self._sock = self._bind()
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                logger.error(f"Port {self.code} is already in use")
                self._close(SessionOutcome.PORT_IN_USE)
            else:
                logger.error(f"Error binding file server on port {self.code}: {e}")
                self._close(SessionOutcome.FAILED)
            return False
        
        self.state = ListenerState.LISTENING
        self.opened_at = time.time()
        logger.info(f"Serving file {self.offer.name} on port {self.code}")
        return True
    
    async def serve(self) -> SessionOutcome:
        """
        Accept one connection, send the file, and close.
        
        Never raises for transfer problems; the outcome records what happened.
        """
        if self.state != ListenerState.LISTENING:
            raise RuntimeError(f"Listener for code {self.code} is {self.state.value}")
        
        try:
            outcome = await self._serve_once()
        except asyncio.CancelledError:
            self._close(SessionOutcome.CANCELLED)
            raise
        
        self._close(outcome)
        if self._on_closed:
            await self._on_closed(self)
        return outcome
    
    async def _serve_once(self) -> SessionOutcome:
        loop = asyncio.get_running_loop()
        
        try:
            conn, self.peer = await asyncio.wait_for(
                loop.sock_accept(self._sock),
                timeout=self.accept_timeout
            )
        except asyncio.TimeoutError:
            logger.info(f"No download for code {self.code} within "
                        f"{self.accept_timeout:.0f}s, closing")
            return SessionOutcome.EXPIRED
        except OSError as e:
            logger.error(f"Error accepting on port {self.code}: {e}")
            return SessionOutcome.FAILED
        finally:
            # Stop accepting: later connection attempts are refused
            self._sock.close()
            self._sock = None
        
        self.state = ListenerState.SERVING
        # The offer is consumed by this connection
        self.registry.remove(self.code, expected=self.offer)
        logger.info(f"Client connection on port {self.code}: {self.peer}")
        
        try:
            await self._send(conn)
        except Exception as e:
            logger.error(f"Error sending file to client {self.peer}: {e}")
            return SessionOutcome.FAILED
        
        logger.info(f"File {self.offer.name} sent to {self.peer} "
                    f"({self.bytes_sent:,} bytes)")
        return SessionOutcome.SERVED
    
    async def _send(self, conn: socket.socket):
        """Write the header line and stream the file, then close the connection."""
        try:
            reader, writer = await asyncio.open_connection(sock=conn)
        except Exception:
            conn.close()
            raise
        
        try:
            writer.write(encode_header(self.offer.name))
            
            async with aiofiles.open(self.offer.path, 'rb') as f:
                while True:
                    chunk = await f.read(self.chunk_size)
                    if not chunk:
                        break
                    writer.write(chunk)
                    await writer.drain()
                    self.bytes_sent += len(chunk)
            
            await writer.drain()
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError as e:
                logger.debug(f"Error closing socket: {e}")
    
    def to_dict(self) -> dict:
        return {
            'code': self.code,
            'state': self.state.value,
            'outcome': self.outcome.value if self.outcome else None,
            'file_name': self.offer.name if self.offer else None,
            'bytes_sent': self.bytes_sent,
            'opened_at': self.opened_at,
            'closed_at': self.closed_at,
        }


async def serve(registry: FileRegistry, code: int, **kwargs) -> OneShotListener:
    """
    Run a full one-shot session for `code` in the current task.
    
    Returns the closed listener; its `outcome` tells how the session ended.
    """
    listener = OneShotListener(registry, code, **kwargs)
    if await listener.open():
        await listener.serve()
    return listener


class ListenerPool:
    """
    Bounded, supervised set of one-shot listeners.
    
    Owns the background tasks, evicts offers once their session closes,
    and periodically sweeps offers that never got a listener.
    """
    
    def __init__(self, registry: FileRegistry, storage: UploadStorage,
                 host: str = '0.0.0.0',
                 max_listeners: int = 64,
                 offer_ttl: float = 600.0,
                 sweep_interval: float = 30.0,
                 chunk_size: int = SEND_CHUNK_SIZE):
        self.registry = registry
        self.storage = storage
        self.host = host
        self.max_listeners = max_listeners
        self.offer_ttl = offer_ttl
        self.sweep_interval = sweep_interval
        self.chunk_size = chunk_size
        
        self._listeners: Dict[int, OneShotListener] = {}
        self._tasks: Dict[int, asyncio.Task] = {}
        self._sweeper: Optional[asyncio.Task] = None
        
        # Statistics
        self.sessions_served = 0
        self.sessions_failed = 0
        self.sessions_expired = 0
        self.bytes_sent = 0
    
    @property
    def active_count(self) -> int:
        return len(self._listeners)
    
    def get_listener(self, code: int) -> Optional[OneShotListener]:
        return self._listeners.get(code)
    
    def get_task(self, code: int) -> Optional[asyncio.Task]:
        return self._tasks.get(code)
    
    async def start(self):
        """Start the periodic offer sweep."""
        if self.offer_ttl > 0 and self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info(f"Listener pool started (max {self.max_listeners} listeners)")
    
    async def stop(self):
        """Cancel the sweep and every outstanding listener."""
        tasks = list(self._tasks.values())
        if self._sweeper:
            tasks.append(self._sweeper)
            self._sweeper = None
        
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        
        self._listeners.clear()
        self._tasks.clear()
        logger.info(f"Listener pool stopped. Served {self.sessions_served} files, "
                    f"{self.bytes_sent:,} bytes")
    
    async def spawn(self, code: int) -> OneShotListener:
        """
        Bind a listener for `code` and serve it in the background.
        
        Returns:
            The listener. If no file is associated with the code it is
            returned already closed with outcome NO_FILE.
        
        Raises:
            CapacityError: if max_listeners are already outstanding
            PortConflictError: if the code's port is already bound
        """
        if self.active_count >= self.max_listeners:
            raise CapacityError(
                f"Too many outstanding offers ({self.max_listeners}), try again later"
            )
        
        listener = OneShotListener(
            self.registry, code,
            host=self.host,
            accept_timeout=self.offer_ttl if self.offer_ttl > 0 else None,
            chunk_size=self.chunk_size,
            on_closed=self._on_closed,
        )
        
        if not await listener.open():
            if listener.outcome == SessionOutcome.PORT_IN_USE:
                raise PortConflictError(errno.EADDRINUSE,
                                        f"Port {code} is already in use")
            if listener.outcome == SessionOutcome.FAILED:
                raise PortConflictError(f"Could not bind port {code}")
            return listener
        
        self._listeners[code] = listener
        task = asyncio.create_task(listener.serve(), name=f"listener-{code}")
        self._tasks[code] = task
        task.add_done_callback(lambda t: self._forget(code, t))
        return listener
    
    def _forget(self, code: int, task: asyncio.Task):
        if self._tasks.get(code) is task:
            del self._tasks[code]
        self._listeners.pop(code, None)
    
    async def _on_closed(self, listener: OneShotListener):
        """Evict the offer of a finished session and delete its blob."""
        self._listeners.pop(listener.code, None)
        
        if listener.outcome == SessionOutcome.SERVED:
            self.sessions_served += 1
        elif listener.outcome == SessionOutcome.EXPIRED:
            self.sessions_expired += 1
        else:
            self.sessions_failed += 1
        self.bytes_sent += listener.bytes_sent
        
        self.registry.remove(listener.code, expected=listener.offer)
        await self._discard(listener.offer)
    
    async def _discard(self, offer: FileOffer):
        if not offer.owned:
            return
        try:
            await self.storage.remove(offer.path)
        except OSError as e:
            logger.error(f"Error removing {offer.path}: {e}")
    
    async def sweep(self) -> int:
        """
        Evict stale offers that have no live listener.
        
        Returns:
            Number of offers evicted
        """
        stale = self.registry.expire(self.offer_ttl, keep=set(self._listeners))
        for offer in stale:
            logger.info(f"Offer {offer.code} ({offer.name}) expired unclaimed")
            await self._discard(offer)
        self.sessions_expired += len(stale)
        return len(stale)
    
    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Offer sweep failed: {e}", exc_info=True)
    
    def get_stats(self) -> dict:
        """Get listener pool statistics."""
        return {
            'active_listeners': self.active_count,
            'max_listeners': self.max_listeners,
            'served': self.sessions_served,
            'failed': self.sessions_failed,
            'expired': self.sessions_expired,
            'bytes_sent': self.bytes_sent,
            'listeners': [l.to_dict() for l in self._listeners.values()],
        }
