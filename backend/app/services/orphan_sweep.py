"""Find stored objects that have no metadata row.

Orphans appear when the metadata insert after a successful upload fails,
and whenever a gallery delete removes the row but leaves the object.  The
sweep only reports; removing objects is left to an operator.
"""

import logging

from sqlalchemy.orm import Session

from app.services.metadata_store import MetadataStore
from app.services.storage import StorageService

logger = logging.getLogger(__name__)


class OrphanSweeper:
    def __init__(
        self,
        storage: StorageService,
        metadata: MetadataStore,
        *,
        image_folder: str = "generated_interiors",
    ) -> None:
        self.storage = storage
        self.metadata = metadata
        self.image_folder = image_folder.strip("/")

    async def find_orphans(self, db: Session, user_id: str) -> list[str]:
        """Public ids under the owner's image folder with no matching row."""
        known = self.metadata.public_ids(db, user_id)
        prefix = f"{self.image_folder}/{user_id}/"
        orphans = [
            public_id
            async for public_id in self.storage.iter_public_ids(prefix)
            if public_id not in known
        ]
        if orphans:
            logger.warning(
                "Found %d orphaned objects for %s", len(orphans), user_id,
                extra={"orphans": orphans[:50]},
            )
        return orphans
