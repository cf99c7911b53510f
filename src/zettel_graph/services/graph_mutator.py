"""Insertion of discovered links into note bodies, with a version trail."""
import logging
import threading
from typing import Optional

from zettel_graph.models.schema import EmbedStatus, Note, NoteVersion, utc_now
from zettel_graph.observability import metrics, timed_operation
from zettel_graph.services.wikilinks import format_wikilink
from zettel_graph.storage.base import NoteStore
from zettel_graph.utils import raise_if_cancelled

logger = logging.getLogger(__name__)

LINK_SEPARATOR = "\n\n"


class WikilinkInserter:
    """Appends a ``[[Target]]`` reference to an orphan note.

    The read-modify-write is not synchronised: two concurrent inserts into
    the same orphan can both append their link.
    """

    def __init__(self, store: NoteStore) -> None:
        self.store = store

    def insert(
        self,
        orphan_id: str,
        target_id: str,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[Note]:
        """Link ``orphan_id`` to ``target_id``.

        A snapshot of the orphan's previous title and content is written in
        the same transaction as the update, so a failed update leaves no
        version behind. The link is always appended, even when already
        present. The note's embedding is marked stale.

        Returns:
            The updated orphan, or None when either note does not exist.
        """
        with timed_operation("insert_wikilink", orphan_id=orphan_id, target_id=target_id):
            raise_if_cancelled(cancel, "insert_wikilink")
            orphan = self.store.get_note(orphan_id)
            raise_if_cancelled(cancel, "insert_wikilink")
            if orphan is None:
                logger.info(f"Wikilink not inserted: orphan note {orphan_id} not found")
                return None

            target = self.store.get_note(target_id)
            raise_if_cancelled(cancel, "insert_wikilink")
            if target is None:
                logger.info(f"Wikilink not inserted: target note {target_id} not found")
                return None

            snapshot = NoteVersion(note_id=orphan.id, title=orphan.title, content=orphan.content)
            link = format_wikilink(target.title)
            updated = orphan.model_copy(
                update={
                    "content": f"{orphan.content}{LINK_SEPARATOR}{link}" if orphan.content else link,
                    "embed_status": EmbedStatus.STALE,
                    "updated_at": utc_now(),
                }
            )
            self.store.update_note_with_version(snapshot, updated)

            metrics.increment("wikilinks_inserted")
            logger.info(f"Wikilink inserted: {orphan_id} -> {target_id} ({target.title})")
            return updated
