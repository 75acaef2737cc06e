# sync_history.py
# Description: Bounded audit log of successful sync passes plus the "last successful sync" marker.
#
# Imports
from datetime import datetime
from typing import List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..DB.POS_DB import POSDatabase, POSDatabaseError
from .exceptions import StorageFailure
from .models import SyncPassRecord, parse_iso, to_iso
#
########################################################################################################################
#
# Classes and Functions:

LAST_SYNC_STATE_KEY = "last_successful_sync"


class SyncHistoryLog:
    """Keeps at most `max_entries` pass records; the oldest inserted record is evicted first."""

    MAX_ENTRIES = 20

    def __init__(self, db: POSDatabase, max_entries: int = MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if max_entries > self.MAX_ENTRIES:
            logger.warning(f"History bound {max_entries} exceeds the {self.MAX_ENTRIES}-record cap; using {self.MAX_ENTRIES}")
            max_entries = self.MAX_ENTRIES
        self.db = db
        self.max_entries = max_entries

    def append(self, record: SyncPassRecord) -> None:
        """
        Stores a record and trims the log to the bound, atomically.

        Raises:
            StorageFailure: If the write fails.
        """
        try:
            with self.db.transaction():
                self.db.execute_query(
                    "INSERT INTO sync_history (id, occurred_at, counts) VALUES (?, ?, ?)",
                    (record.id, to_iso(record.occurred_at), record.counts_json()),
                )
                self.db.execute_query(
                    "DELETE FROM sync_history WHERE seq NOT IN "
                    "(SELECT seq FROM sync_history ORDER BY seq DESC LIMIT ?)",
                    (self.max_entries,),
                )
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to append sync history record {record.id}: {e}") from e
        logger.info(f"Recorded sync pass {record.id}: {record.display_counts()}")

    def list(self) -> List[SyncPassRecord]:
        """All stored records, newest first."""
        try:
            rows = self.db.execute_query("SELECT id, occurred_at, counts FROM sync_history ORDER BY seq DESC").fetchall()
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to read sync history: {e}") from e
        return [SyncPassRecord.from_row(dict(row)) for row in rows]

    def last_successful_sync(self) -> Optional[datetime]:
        try:
            return parse_iso(self.db.get_state(LAST_SYNC_STATE_KEY))
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to read last sync time: {e}") from e

    def set_last_successful_sync(self, when: datetime) -> None:
        try:
            self.db.set_state(LAST_SYNC_STATE_KEY, to_iso(when))
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to store last sync time: {e}") from e

#
# End of sync_history.py
########################################################################################################################
