# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Set of message UIDs already selected for notification in this run."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable


logger = logging.getLogger(__name__)


class DedupLedger:
    """UIDs reserved for dispatch during the current watcher run.

    A UID is reserved at selection time, before its fetch is issued, so two
    detection passes can never both select it.  Entries are only ever
    removed all at once by ``clear()`` when the watcher stops.
    """

    def __init__(self) -> None:
        self._uids: set[int] = set()
        self._lock = threading.Lock()

    def reserve(self, uids: Iterable[int]) -> list[int]:
        """Reserve every UID not seen before.

        Args:
            uids: Candidate UIDs, e.g. the result of an UNSEEN search.

        Returns:
            The newly reserved UIDs in input order, without duplicates.
        """
        reserved: list[int] = []
        with self._lock:
            for uid in uids:
                if uid not in self._uids:
                    self._uids.add(uid)
                    reserved.append(uid)
        if reserved:
            logger.debug("Reserved %d UIDs: %s", len(reserved), reserved)
        return reserved

    def clear(self) -> None:
        with self._lock:
            self._uids.clear()

    def __contains__(self, uid: object) -> bool:
        with self._lock:
            return uid in self._uids

    def __len__(self) -> int:
        with self._lock:
            return len(self._uids)
