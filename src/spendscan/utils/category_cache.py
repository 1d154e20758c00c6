import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class CategoryCache:
    """Item name -> category lookup persisted as a JSON file.

    Keys are lowercased item names. Writes are last-write-wins with no locking;
    the cache only saves an LLM round trip, so a lost update is harmless.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._entries: dict[str, str] | None = None

    @staticmethod
    def _key(item_name: str) -> str:
        return item_name.strip().lower()

    @property
    def entries(self) -> dict[str, str]:
        if self._entries is None:
            self._entries = self.load()
        return self._entries

    def load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable category cache %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed category cache %s", self.path)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def get(self, item_name: str) -> str | None:
        return self.entries.get(self._key(item_name))

    def set(self, item_name: str, category: str) -> None:
        self.entries[self._key(item_name)] = category
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(self.entries, ensure_ascii=False, indent=2), encoding="utf-8"
        )
