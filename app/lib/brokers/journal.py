# backend/app/lib/brokers/journal.py
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, List
from uuid import uuid4

from app.schemas import ActionKind, ActionRecord, ActionState

logger = logging.getLogger(__name__)


class ActionJournal:
    """
    In-memory record of multi-call brokerage actions.

    A place-trade goes placed -> confirmed | failed; a close goes
    read -> offset_sent -> closed | failed. Records left in a non-terminal or
    failed state are what a caller has to reconcile by hand.
    """

    def __init__(self, max_records: int = 1000):
        self.max_records = max_records
        self._records: "OrderedDict[str, ActionRecord]" = OrderedDict()

    def start(self, identity: str, kind: ActionKind, state: ActionState, **fields: Any) -> ActionRecord:
        record = ActionRecord(id=str(uuid4()), identity=identity, kind=kind, state=state, **fields)
        self._records[record.id] = record
        while len(self._records) > self.max_records:
            self._records.popitem(last=False)
        return record

    def advance(self, record: ActionRecord, state: ActionState, **fields: Any) -> ActionRecord:
        for key, value in fields.items():
            setattr(record, key, value)
        record.state = state
        record.updatedAt = datetime.now(timezone.utc)
        if state is ActionState.FAILED:
            logger.warning(
                f"{record.kind.value} for '{record.identity}' failed "
                f"(ref={record.dealReference}, deal={record.dealId}): {record.error}"
            )
        return record

    def unresolved(self, identity: str) -> List[ActionRecord]:
        """Records for ``identity`` that never reached a successful end state."""
        return [
            r for r in self._records.values()
            if r.identity == identity and (not r.state.is_terminal or r.state is ActionState.FAILED)
        ]
