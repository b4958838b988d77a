import hashlib
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from formsync.codec import coerce_submission
from formsync.errors import TransportError
from formsync.models import FormConfig, SubmissionRecord, SubmitResult
from formsync.schema import ensure_valid
from formsync.store import SubmissionStore
from formsync.transport import EndpointTransport

logger = logging.getLogger(__name__)

DEFAULT_DEDUP_WINDOW = 10.0


def fingerprint(record: Mapping[str, Any]) -> str:
    """Content hash of a record; key order is significant."""
    serialized = json.dumps(record, default=str, separators=(",", ":"))
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class DedupLedger:
    """Fingerprints of recent submissions, each forgotten once the window has elapsed."""

    def __init__(self, window: float = DEFAULT_DEDUP_WINDOW, clock: Callable[[], float] = time.monotonic) -> None:
        self.window = window
        self._clock = clock
        self._expiry: Dict[str, float] = {}

    def _purge(self) -> None:
        now = self._clock()
        for key in [k for k, expires in self._expiry.items() if expires <= now]:
            del self._expiry[key]

    def __contains__(self, key: str) -> bool:
        self._purge()
        return key in self._expiry

    def __len__(self) -> int:
        self._purge()
        return len(self._expiry)

    def add(self, key: str) -> None:
        self._expiry[key] = self._clock() + self.window

    def discard(self, key: str) -> None:
        self._expiry.pop(key, None)


class SyncEngine:
    """
    Owns the dedup ledger and the fallback store for the lifetime of the process.

    With no transport every call goes straight to the fallback store; that mode
    is permanent, not a transient failure.
    """

    def __init__(
        self,
        transport: Optional[EndpointTransport] = None,
        store: Optional[SubmissionStore] = None,
        ledger: Optional[DedupLedger] = None,
    ) -> None:
        self.transport = transport
        self.store = store if store is not None else SubmissionStore()
        self.ledger = ledger if ledger is not None else DedupLedger()
        if transport is None:
            logger.info("No endpoint configured; submissions are kept in the local fallback store")
        else:
            logger.info("Syncing submissions with %s", transport.endpoint_url)

    async def submit(self, user_id: str, form_values: Mapping[str, Any], config: FormConfig) -> SubmitResult:
        ensure_valid(config)

        values = coerce_submission(config, form_values)
        record_fields: Dict[str, Any] = dict(values)
        record_fields["userId"] = user_id
        if form_values.get("timestamp"):
            record_fields["timestamp"] = form_values["timestamp"]

        key = fingerprint(record_fields)
        if key in self.ledger:
            logger.warning("Duplicate submission for user %s prevented", user_id)
            return SubmitResult(success=True, duplicate_prevented=True, source="ledger")
        self.ledger.add(key)

        try:
            return await self._persist(user_id, record_fields)
        except BaseException:
            # an unpersisted record must not be reported as a duplicate on retry
            self.ledger.discard(key)
            raise

    async def _persist(self, user_id: str, record_fields: Dict[str, Any]) -> SubmitResult:
        record_fields.setdefault("timestamp", utc_timestamp())
        record = SubmissionRecord.model_validate(record_fields)

        if self.transport is not None:
            try:
                await self.transport.write(record)
            except TransportError as exc:
                logger.warning("Write for user %s failed (%s); falling back to local store", user_id, exc)
            else:
                logger.info("Submitted record for user %s via endpoint", user_id)
                return SubmitResult(success=True, source="endpoint")

        count = await self.store.append(user_id, record)
        logger.info("Stored record %d for user %s in fallback store", count, user_id)
        return SubmitResult(success=True, source="fallback")

    async def fetch(self, user_id: str) -> Optional[SubmissionRecord]:
        if self.transport is not None:
            try:
                record = await self.transport.read(user_id)
            except TransportError as exc:
                logger.warning("Read for user %s failed (%s); falling back to local store", user_id, exc)
            else:
                logger.info("Fetched %s for user %s via endpoint", "record" if record else "nothing", user_id)
                return record

        record = await self.store.latest(user_id)
        logger.info("Fetched %s for user %s from fallback store", "record" if record else "nothing", user_id)
        return record
