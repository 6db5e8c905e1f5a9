"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The low-level networking infrastructure:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                           LISTENER                                  │
    │  • Owns the listening socket, runs accept() on a background thread  │
    │  • Hands every accepted socket to admission                         │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                      ADMISSION CONTROLLER                           │
    │  • Lock-guarded registry of active connections                      │
    │  • Rejects sockets beyond max_connections                           │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          THREAD POOL                                │
    │  • Fixed set of workers, one connection task per worker at a time   │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                 │
    │  • Framed receive()/reply() over one socket                         │
    │  • NEW → OPEN → RECEIVING/REPLYING → CLOSED                         │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .connection import Connection, ConnectionState
from .admission import AdmissionController
from .thread_pool import ThreadPool
from .listener import Listener
from .tracker import LeakTracker

__all__ = [
    "Connection",
    "ConnectionState",
    "AdmissionController",
    "ThreadPool",
    "Listener",
    "LeakTracker",
]
