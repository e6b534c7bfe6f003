# nearchat/ui/inbox.py

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional

MAX_MESSAGES = 100


@dataclass
class Message:
    id: int
    direction: str      # "in" | "out"
    peer_id: str
    text: str
    ts: float


class Inbox:
    """
    Bounded in-memory view of the conversation for the UI.
    Never written to disk; older lines fall off.
    """

    def __init__(self, lock: Optional[threading.Lock] = None, maxlen: int = MAX_MESSAGES):
        self._lock = lock or threading.Lock()
        self._messages = deque(maxlen=maxlen)
        self._last_id = 0

    def store(self, direction: str, peer_id: str, text: str) -> Message:
        with self._lock:
            self._last_id += 1
            msg = Message(
                id=self._last_id,
                direction=direction,
                peer_id=peer_id,
                text=text,
                ts=time.time(),
            )
            self._messages.append(msg)
            return msg

    def messages_since(self, after_id: int) -> List[Message]:
        with self._lock:
            return [m for m in self._messages if m.id > after_id]

    def clear(self):
        with self._lock:
            self._messages.clear()

    def serialize_message(self, msg: Message) -> Dict:
        return {
            "id": msg.id,
            "direction": msg.direction,
            "peer_id": msg.peer_id,
            "text": msg.text,
            "ts": msg.ts,
            "iso": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(msg.ts)),
        }

    def serialize_messages(self, messages: List[Message]) -> List[Dict]:
        return [self.serialize_message(msg) for msg in messages]
