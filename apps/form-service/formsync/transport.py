"""
One-way channels to an endpoint that only answers navigation-style requests.

Reads inject a callback-wrapped script load: the endpoint answers
``GET <endpoint>?userId=<id>&callback=<name>`` with executable text of the form
``<name>({...})``, which is dispatched to the callback registered under
``<name>``. Writes post a single ``payload`` form field at a receiver that is
considered complete once its response has loaded; its body may be unreadable.
"""

import asyncio
import json
import logging
import re
import secrets
from typing import Any, Callable, Dict, Optional

import requests

from formsync.errors import TransportFailure, TransportTimeout
from formsync.models import SubmissionRecord, WriteResult

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
CALLBACK_PREFIX = "formsyncCallback_"
RECEIVER_PREFIX = "formsyncReceiver_"

CALLBACK_INVOCATION_RE = re.compile(r"^\s*([A-Za-z_$][\w$]*)\s*\((.*)\)\s*;?\s*$", re.DOTALL)


def _token() -> str:
    return secrets.token_hex(5)[:9]


class EndpointTransport:
    def __init__(
        self,
        endpoint_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[Any] = None,
    ) -> None:
        if not endpoint_url:
            raise ValueError("endpoint_url is required")
        self.endpoint_url = endpoint_url
        self.timeout = timeout
        self._session = session or requests.Session()
        # global state of the channels; both must be empty whenever no call is in flight
        self.callbacks: Dict[str, Callable[[Any], None]] = {}
        self.loaders: Dict[str, "asyncio.Task[None]"] = {}
        self.receivers: Dict[str, str] = {}

    @property
    def in_flight(self) -> int:
        return len(self.callbacks) + len(self.loaders) + len(self.receivers)

    # read channel

    async def read(self, user_id: str) -> Optional[SubmissionRecord]:
        loop = asyncio.get_running_loop()
        name = CALLBACK_PREFIX + _token()
        while name in self.callbacks:
            name = CALLBACK_PREFIX + _token()

        outcome: "asyncio.Future[Any]" = loop.create_future()

        def callback(payload: Any) -> None:
            if not outcome.done():
                outcome.set_result(payload)

        self.callbacks[name] = callback
        loader = asyncio.create_task(self._load_script(name, user_id, outcome))
        self.loaders[name] = loader
        log.debug("Registered read callback %s for user %s", name, user_id)

        try:
            payload = await asyncio.wait_for(outcome, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            log.warning("Read for user %s timed out after %.1fs", user_id, self.timeout)
            raise TransportTimeout(f"read timed out after {self.timeout}s") from exc
        finally:
            self.callbacks.pop(name, None)
            pending = self.loaders.pop(name, None)
            if pending is not None and not pending.done():
                pending.cancel()
            log.debug("Removed read callback %s", name)

        return self._parse_read_payload(payload)

    async def _load_script(self, name: str, user_id: str, outcome: "asyncio.Future[Any]") -> None:
        params = {"userId": user_id, "callback": name}
        try:
            response = await asyncio.to_thread(
                self._session.get, self.endpoint_url, params=params, timeout=self.timeout
            )
            status = getattr(response, "status_code", 200)
            if status >= 400:
                raise TransportFailure(f"script load failed with HTTP {status}")
            self._execute(response.text or "")
            if not outcome.done():
                raise TransportFailure("endpoint response did not invoke the callback")
        except asyncio.CancelledError:
            raise
        except TransportFailure as exc:
            if not outcome.done():
                outcome.set_exception(exc)
        except requests.RequestException as exc:
            if not outcome.done():
                outcome.set_exception(TransportFailure(f"script load failed: {exc}"))
        except Exception as exc:
            log.warning("Script load for %s failed unexpectedly: %s", name, exc)
            if not outcome.done():
                outcome.set_exception(TransportFailure(f"script load failed: {exc}"))

    def _execute(self, script: str) -> None:
        match = CALLBACK_INVOCATION_RE.match(script)
        if not match:
            raise TransportFailure("endpoint response is not a callback invocation")
        target = self.callbacks.get(match.group(1))
        if target is None:
            raise TransportFailure(f"endpoint invoked unknown callback {match.group(1)!r}")
        try:
            payload = json.loads(match.group(2))
        except ValueError as exc:
            raise TransportFailure("callback argument is not valid JSON") from exc
        target(payload)

    @staticmethod
    def _parse_read_payload(payload: Any) -> Optional[SubmissionRecord]:
        if not isinstance(payload, dict):
            raise TransportFailure("callback payload is not an object")
        if not payload.get("success"):
            raise TransportFailure(str(payload.get("error") or "Unknown error"))
        data = payload.get("data")
        if data is None:
            return None
        if not isinstance(data, dict):
            raise TransportFailure("callback data is not a record")
        try:
            return SubmissionRecord.model_validate(data)
        except ValueError as exc:
            raise TransportFailure(f"callback data is not a submission record: {exc}") from exc

    # write channel

    async def write(self, record: SubmissionRecord) -> WriteResult:
        receiver = RECEIVER_PREFIX + _token()
        payload = json.dumps(record.to_payload(), default=str)
        self.receivers[receiver] = record.user_id
        log.debug("Posting record for user %s into receiver %s", record.user_id, receiver)

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self._session.post, self.endpoint_url, data={"payload": payload}, timeout=self.timeout
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            log.warning("Write for user %s timed out after %.1fs", record.user_id, self.timeout)
            raise TransportTimeout(f"write timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise TransportFailure(f"form post failed: {exc}") from exc
        except Exception as exc:
            log.warning("Form post for user %s failed unexpectedly: %s", record.user_id, exc)
            raise TransportFailure(f"form post failed: {exc}") from exc
        finally:
            self.receivers.pop(receiver, None)

        return self._read_receiver(getattr(response, "text", None))

    @staticmethod
    def _read_receiver(body: Optional[str]) -> WriteResult:
        # an unreadable or unexpected body cannot be told apart from an opaque success
        if not body:
            return WriteResult(success=True)
        try:
            parsed = json.loads(body)
        except ValueError:
            log.warning("Write response could not be parsed; assuming success")
            return WriteResult(success=True)
        if not isinstance(parsed, dict) or "success" not in parsed:
            log.warning("Write response has unexpected shape; assuming success")
            return WriteResult(success=True)
        if not parsed.get("success"):
            raise TransportFailure(str(parsed.get("error") or "endpoint reported failure"))
        return WriteResult(success=True, result=parsed.get("result"))
