import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from formsync.models import FormConfig
from formsync.schema import ensure_valid

logger = logging.getLogger(__name__)

DEFAULT_FORM_CONFIG = {
    "groups": ["Personal Information", "Clinical Information"],
    "fields": [
        {"id": "name", "type": "text", "label": "Full Name", "required": True, "group": "Personal Information"},
        {"id": "age", "type": "number", "label": "Age", "required": True, "group": "Personal Information"},
        {"id": "hasDiabetes", "type": "checkbox", "label": "Has Diabetes", "group": "Clinical Information"},
        {
            "id": "glucoseLevel",
            "type": "number",
            "label": "Glucose Level",
            "group": "Clinical Information",
            "condition": {"dependsOn": "hasDiabetes", "value": True},
        },
    ],
}


class Settings(BaseModel):
    endpoint_url: Optional[str] = None
    transport_timeout: float = 10.0
    dedup_window: float = 10.0
    fallback_delay: float = 0.5
    config_path: Optional[str] = None
    recent_ids_path: Optional[str] = None


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("%s=%r is not a number; using %s", name, raw, default)
        return default


def load_settings() -> Settings:
    endpoint = (os.getenv("FORMSYNC_ENDPOINT_URL") or "").strip() or None
    config_path = (os.getenv("FORMSYNC_CONFIG_PATH") or "").strip() or None
    return Settings(
        endpoint_url=endpoint,
        transport_timeout=_float_env("FORMSYNC_TRANSPORT_TIMEOUT", 10.0),
        dedup_window=_float_env("FORMSYNC_DEDUP_WINDOW", 10.0),
        fallback_delay=_float_env("FORMSYNC_FALLBACK_DELAY", 0.5),
        config_path=config_path,
        recent_ids_path=recent_ids_path_for(config_path),
    )


def default_form_config() -> FormConfig:
    return FormConfig.model_validate(DEFAULT_FORM_CONFIG)


def load_form_config(path: Optional[str]) -> FormConfig:
    """Saved configuration if one is readable and valid, otherwise the built-in default."""
    if not path or not Path(path).is_file():
        return default_form_config()
    try:
        config = FormConfig.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))
        return ensure_valid(config)
    except Exception:
        logger.exception("Unable to load form configuration from %s; using defaults", path)
        return default_form_config()


def save_form_config(path: Optional[str], config: FormConfig) -> None:
    if not path:
        return
    Path(path).write_text(
        json.dumps(config.model_dump(by_alias=True, exclude_none=True), indent=2), encoding="utf-8"
    )
    logger.info("Saved form configuration with %d fields to %s", len(config.fields), path)


def recent_ids_path_for(config_path: Optional[str]) -> Optional[str]:
    """Recent user ids are kept beside the saved form configuration."""
    if not config_path:
        return None
    path = Path(config_path)
    return str(path.with_name(f"{path.stem}.recent_user_ids.json"))


def load_recent_user_ids(path: Optional[str]) -> List[str]:
    if not path or not Path(path).is_file():
        return []
    try:
        ids = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.exception("Unable to load recent user ids from %s", path)
        return []
    if not isinstance(ids, list):
        logger.warning("Ignoring recent user ids in %s: expected a list", path)
        return []
    return [str(user_id) for user_id in ids if user_id]


def save_recent_user_ids(path: Optional[str], ids: List[str]) -> None:
    if not path:
        return
    try:
        Path(path).write_text(json.dumps(ids), encoding="utf-8")
    except OSError:
        logger.exception("Unable to save recent user ids to %s", path)
