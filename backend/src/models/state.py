from typing import Any, Dict, Iterable, List

from utilities import InvalidStateActionError, NoChannelError

class ChannelStateStore:
    '''
    Per-channel key/value documents. Documents are created on first access
    and live independently of the channel's subscribers.
    '''

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._documents

    def document(self, name: str) -> Dict[str, Any]:
        return self._documents.setdefault(name, {})

    def keys(self) -> Dict[str, List[str]]:
        return {name: sorted(doc) for name, doc in self._documents.items()}

    def get(self, names: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        return {name: dict(self.document(name)) for name in names}

    def merge(self, names: Iterable[str], partial: Any) -> Dict[str, Dict[str, Any]]:
        names = list(names)
        if isinstance(partial, dict):
            for name in names:
                self.document(name).update(partial)
        return self.get(names)

    def remove(self, names: Iterable[str], keys: Any) -> Dict[str, Dict[str, Any]]:
        names = list(names)
        if isinstance(keys, list):
            for name in names:
                doc = self.document(name)
                for key in keys:
                    doc.pop(str(key), None)
        return self.get(names)

    def apply(self, action: str, names: List[str], data: Any = None) -> Dict[str, Dict[str, Any]]:
        """Run one state action and return the resulting document per channel."""
        if not names:
            raise NoChannelError()
        if action == "add":
            return self.merge(names, data)
        if action == "remove":
            return self.remove(names, data)
        if action == "get":
            return self.get(names)
        raise InvalidStateActionError(f"unknown state action: {action}")
