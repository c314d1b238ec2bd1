from __future__ import annotations

from typing import NewType

ConversationId = NewType("ConversationId", str)
MessageId = NewType("MessageId", int)
UserId = NewType("UserId", int)
ClientMsgId = NewType("ClientMsgId", str)
