import logging
from typing import Any, Dict

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from formsync.codec import display_values
from formsync.editor import (
    RecentUserIds,
    add_field,
    add_group,
    generate_user_id,
    move_field,
    remove_field,
    remove_group,
    update_field,
)
from formsync.errors import CoercionError, SchemaValidationError
from formsync.models import FieldDefinition, FormConfig, ValidationResult
from formsync.schema import ensure_valid, get_visible_fields, validate
from formsync.settings import (
    default_form_config,
    load_form_config,
    load_recent_user_ids,
    load_settings,
    save_form_config,
    save_recent_user_ids,
)
from formsync.store import SubmissionStore
from formsync.sync import DedupLedger, SyncEngine
from formsync.transport import EndpointTransport

load_dotenv()

logger = logging.getLogger(__name__)

settings = load_settings()

app = FastAPI(title="FormSync Form Service")

_transport = (
    EndpointTransport(settings.endpoint_url, timeout=settings.transport_timeout) if settings.endpoint_url else None
)
engine = SyncEngine(
    transport=_transport,
    store=SubmissionStore(delay=settings.fallback_delay),
    ledger=DedupLedger(window=settings.dedup_window),
)
recent_user_ids = RecentUserIds(initial=load_recent_user_ids(settings.recent_ids_path))

_state: Dict[str, FormConfig] = {"config": load_form_config(settings.config_path)}

logger.info("Form configuration loaded with %d fields", len(_state["config"].fields))


class FormValues(BaseModel):
    values: Dict[str, Any] = Field(default_factory=dict)


class GroupRequest(BaseModel):
    name: str


class MoveRequest(BaseModel):
    source_index: int
    destination_index: int


def _dump(config: FormConfig) -> Dict[str, Any]:
    return config.model_dump(by_alias=True, exclude_none=True)


def _schema_error(exc: SchemaValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"code": exc.code, "field_id": exc.field_id, "message": exc.message},
    )


def _replace_config(config: FormConfig) -> Dict[str, Any]:
    try:
        save_form_config(settings.config_path, config)
    except OSError as exc:
        logger.exception("Unable to save form configuration to %s", settings.config_path)
        raise HTTPException(status_code=500, detail="Failed to save form configuration") from exc
    _state["config"] = config
    return _dump(config)


def _remember_user(user_id: str) -> None:
    if recent_user_ids.remember(user_id):
        save_recent_user_ids(settings.recent_ids_path, recent_user_ids.as_list())


@app.get("/health")
async def health():
    return {"ok": True, "service": "form-service", "endpoint_configured": _transport is not None}


@app.get("/config")
async def get_config():
    return _dump(_state["config"])


@app.put("/config")
async def put_config(config: FormConfig):
    try:
        ensure_valid(config)
    except SchemaValidationError as exc:
        raise _schema_error(exc) from exc
    return _replace_config(config)


@app.post("/config/reset")
async def reset_config():
    logger.info("Resetting form configuration to defaults")
    return _replace_config(default_form_config())


@app.post("/config/validate", response_model=ValidationResult)
async def validate_config(config: FormConfig):
    return validate(config)


@app.post("/config/groups")
async def create_group(req: GroupRequest):
    try:
        return _replace_config(add_group(_state["config"], req.name))
    except SchemaValidationError as exc:
        raise _schema_error(exc) from exc


@app.delete("/config/groups/{name}")
async def delete_group(name: str):
    if name not in _state["config"].groups:
        raise HTTPException(status_code=404, detail="Group not found")
    try:
        return _replace_config(remove_group(_state["config"], name))
    except SchemaValidationError as exc:
        raise _schema_error(exc) from exc


@app.post("/config/fields")
async def create_field(field: FieldDefinition):
    try:
        return _replace_config(add_field(_state["config"], field))
    except SchemaValidationError as exc:
        raise _schema_error(exc) from exc


@app.put("/config/fields/{field_id}")
async def edit_field(field_id: str, field: FieldDefinition):
    if field.id != field_id:
        raise HTTPException(status_code=400, detail="Field id in path and body differ")
    try:
        return _replace_config(update_field(_state["config"], field))
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Field not found") from exc
    except SchemaValidationError as exc:
        raise _schema_error(exc) from exc


@app.delete("/config/fields/{field_id}")
async def delete_field(field_id: str):
    if _state["config"].field_by_id(field_id) is None:
        raise HTTPException(status_code=404, detail="Field not found")
    try:
        return _replace_config(remove_field(_state["config"], field_id))
    except SchemaValidationError as exc:
        raise _schema_error(exc) from exc


@app.post("/config/fields/move")
async def reorder_field(req: MoveRequest):
    try:
        return _replace_config(move_field(_state["config"], req.source_index, req.destination_index))
    except IndexError as exc:
        raise HTTPException(status_code=400, detail="source_index out of range") from exc


@app.post("/form/visible-fields")
async def visible_fields(req: FormValues):
    fields = get_visible_fields(_state["config"], req.values)
    return {"fields": [field.model_dump(by_alias=True, exclude_none=True) for field in fields]}


@app.post("/submissions/{user_id}")
async def submit(user_id: str, req: FormValues):
    try:
        result = await engine.submit(user_id, req.values, _state["config"])
    except SchemaValidationError as exc:
        raise _schema_error(exc) from exc
    except CoercionError as exc:
        logger.warning("Rejected submission for user %s: %s", user_id, exc)
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    _remember_user(user_id)
    return result.model_dump(by_alias=True, exclude_none=True)


@app.get("/submissions/{user_id}")
async def fetch(user_id: str):
    record = await engine.fetch(user_id)
    if record is None:
        return {"found": False, "record": None, "values": display_values(_state["config"], None)}
    _remember_user(user_id)
    return {
        "found": True,
        "record": record.to_payload(),
        "values": display_values(_state["config"], record.values),
    }


@app.post("/users/new")
async def new_user():
    user_id = generate_user_id()
    _remember_user(user_id)
    return {"userId": user_id}


@app.get("/users/recent")
async def recent_users():
    return {"userIds": recent_user_ids.as_list()}
