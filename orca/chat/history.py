from typing import Dict, List
from orca.chat.store import MessageStore


class HistoryLoader:
    """Conversation context for the upstream model, read straight from the store."""

    def __init__(self, store: MessageStore):
        self.store = store

    def load(self, session_id: int) -> List[Dict[str, str]]:
        return [
            {"role": m.role, "content": m.content}
            for m in self.store.list_ordered(session_id)
        ]
