"""
Trade and migration records.

Records are published only after the operation that produced them has committed, so a
subscriber never sees a trade that was later rolled back.
"""
import threading
from typing import Callable, List, Optional, Union

from mcp_bonding_curve.schemas import MigrationRecord, TradeRecord
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

Record = Union[TradeRecord, MigrationRecord]
Subscriber = Callable[[Record], None]


class EventLog:
    def __init__(self):
        self._records: List[Record] = []
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def publish(self, records: List[Record]) -> None:
        with self._lock:
            self._records.extend(records)
            subscribers = list(self._subscribers)
        for record in records:
            logger.info(f"Event {record.kind} for {record.curve_id}: {record.model_dump_json()}")
            for callback in subscribers:
                try:
                    callback(record)
                except Exception as e:
                    # Already committed
                    logger.exception(f"Event subscriber failed for {record.kind} on {record.curve_id}: {e}")

    def records(self, curve_id: Optional[str] = None, kind: Optional[str] = None) -> List[Record]:
        with self._lock:
            return [
                r for r in self._records
                if (curve_id is None or r.curve_id == curve_id) and (kind is None or r.kind == kind)
            ]
