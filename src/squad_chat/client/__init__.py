"""
Squad Chat Client Module

This module contains the client implementation including:
- Remote backend contract and backends (in-process, shared directory)
- Participant identity
- Room directory
- Message reconciliation
- Session state machine
"""

from .bucket import BucketRemote
from .identity import IdentityStore
from .reconciler import MessageReconciler, MessageStream
from .remote import InMemoryRemote, RemoteService, Subscription
from .rooms import RoomDirectory
from .session import Screen, SessionController

__all__ = [
    'BucketRemote',
    'IdentityStore',
    'MessageReconciler',
    'MessageStream',
    'InMemoryRemote',
    'RemoteService',
    'Subscription',
    'RoomDirectory',
    'Screen',
    'SessionController'
]
