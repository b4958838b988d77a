import asyncio
import logging
from typing import Dict, List, Optional

from formsync.models import SubmissionRecord

logger = logging.getLogger(__name__)


class SubmissionStore:
    """
    In-process append-only log of submissions keyed by userId.

    - Not durable: contents are lost when the process exits.
    - Appends land in call order; the delay only emulates backend latency.
    """

    def __init__(self, delay: float = 0.5) -> None:
        self._delay = max(0.0, delay)
        self._records: Dict[str, List[SubmissionRecord]] = {}

    async def append(self, user_id: str, record: SubmissionRecord) -> int:
        sequence = self._records.setdefault(user_id, [])
        sequence.append(record)
        count = len(sequence)
        logger.debug("Fallback store appended record %d for user %s", count, user_id)
        await self._pause()
        return count

    async def latest(self, user_id: str) -> Optional[SubmissionRecord]:
        await self._pause()
        sequence = self._records.get(user_id)
        if not sequence:
            return None
        return sequence[-1]

    def history(self, user_id: str) -> List[SubmissionRecord]:
        return list(self._records.get(user_id, []))

    async def _pause(self) -> None:
        if self._delay:
            await asyncio.sleep(self._delay)
