"""
Reference backend that only speaks the navigation-style protocol.

Rows live in an in-memory, append-only sheet. Reads answer with a script that
invokes the requested callback; writes accept a single ``payload`` form field.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Form, Request
from fastapi.responses import JSONResponse, Response

from formsync.sync import utc_timestamp

logger = logging.getLogger(__name__)

ENDPOINT_PATH = "/exec"


class Sheet:
    def __init__(self) -> None:
        self.headers: List[str] = []
        self.rows: List[List[Any]] = []

    def _ensure_headers(self, data: Dict[str, Any]) -> List[str]:
        if not self.headers:
            ordered = ["userId", "timestamp"]
            ordered.extend(key for key in data if key not in ordered)
            self.headers = ordered
        return self.headers

    def append(self, data: Dict[str, Any]) -> Dict[str, Any]:
        row = []
        for header in self._ensure_headers(data):
            if header == "timestamp" and not data.get("timestamp"):
                row.append(utc_timestamp())
            else:
                row.append(data.get(header, ""))
        self.rows.append(row)
        return {"message": "Data saved successfully", "rowCount": len(self.rows) + 1}

    def latest(self, user_id: str) -> Optional[Dict[str, Any]]:
        if "userId" not in self.headers:
            return None
        index = self.headers.index("userId")
        for row in reversed(self.rows):
            if row[index] == user_id:
                return dict(zip(self.headers, row))
        return None


def _output(data: Dict[str, Any], callback: Optional[str] = None) -> Response:
    if callback:
        body = f"{callback}({json.dumps(data)})"
        return Response(content=body, media_type="application/javascript")
    return JSONResponse(data)


def create_sheet_app(sheet: Optional[Sheet] = None) -> FastAPI:
    sheet = sheet if sheet is not None else Sheet()
    app = FastAPI(title="FormSync Sheet Endpoint")
    app.state.sheet = sheet

    @app.get(ENDPOINT_PATH)
    def do_get(request: Request):
        callback = request.query_params.get("callback")
        user_id = request.query_params.get("userId")
        if not user_id:
            return _output({"success": False, "error": "Missing userId parameter"}, callback)
        return _output({"success": True, "data": sheet.latest(user_id)}, callback)

    @app.post(ENDPOINT_PATH)
    def do_post(payload: Optional[str] = Form(None)):
        if not payload:
            return _output({"success": False, "error": "No payload found"})
        try:
            data = json.loads(payload)
        except ValueError as exc:
            logger.warning("Rejected payload that is not JSON: %s", exc)
            return _output({"success": False, "error": str(exc)})
        if not isinstance(data, dict) or not data.get("userId"):
            return _output({"success": False, "error": "Missing userId"})
        result = sheet.append(data)
        logger.info("Appended row %d for user %s", result["rowCount"], data["userId"])
        return _output({"success": True, "result": result})

    return app
