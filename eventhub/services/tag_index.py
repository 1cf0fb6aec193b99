import logging
from typing import Iterable, List, Optional

from eventhub.database.port import StoragePort

logger = logging.getLogger(__name__)

MAX_TAGS = 5
MAX_TAG_LENGTH = 20


def normalize_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Trim, drop empties, cap length, dedupe (case-sensitive) and keep at most 5.

    Insertion order is preserved; the first occurrence of a duplicate wins.
    """
    normalized = []
    for raw in tags or []:
        tag = raw.strip()[:MAX_TAG_LENGTH].rstrip()
        if not tag or tag in normalized:
            continue
        normalized.append(tag)
        if len(normalized) == MAX_TAGS:
            break
    return normalized


class TagIndex:
    def __init__(self, storage: StoragePort):
        self.storage = storage

    normalize = staticmethod(normalize_tags)

    def replace(self, event_id: str, tags: Iterable[str]) -> List[str]:
        """Swap the whole tag set of an event in one write.

        Serves tag-only changes; EventStore.update_event folds a tag list into
        its combined field write instead.
        """
        normalized = normalize_tags(tags)
        self.storage.replace_tags(event_id, normalized)
        logger.info("Replaced tags of event %s: %s", event_id, normalized)
        return normalized

    def for_event(self, event_id: str) -> List[str]:
        return self.storage.get_tags(event_id)
