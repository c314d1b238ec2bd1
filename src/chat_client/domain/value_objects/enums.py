from __future__ import annotations

from enum import StrEnum


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    RECONNECTING = "reconnecting"


class Role(StrEnum):
    USER = "USER"
    COSMETOLOGIST = "COSMETOLOGIST"
    ADMIN = "ADMIN"


class MessageType(StrEnum):
    DIRECT = "DIRECT"
    SUPPORT = "SUPPORT"
    BROADCAST = "BROADCAST"


class MessageStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class PresenceStatus(StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"


class ClaimStatus(StrEnum):
    UNCLAIMED = "unclaimed"
    CLAIMED = "claimed"


class TypingPhase(StrEnum):
    IDLE = "idle"
    ANNOUNCING = "announcing"


class BroadcastTarget(StrEnum):
    ALL = "all"
    USERS = "users"
    COSMETOLOGISTS = "cosmetologists"
