from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()

UNSET_TEMPLATE_ID = "00000000-0000-0000-0000-000000000000"

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:4]]

DEFAULTS: Dict[str, Any] = {
    "log_level": "${oc.env:LOG_LEVEL,'INFO'}",
    "database_path": "${oc.env:DATABASE_PATH,'data/proofs.db'}",
    "http_timeout": 30.0,
    "dynamic_mockups": {
        "api_key": "${oc.env:DYNAMIC_MOCKUPS_API_KEY,''}",
        "base_url": "${oc.env:DYNAMIC_MOCKUPS_BASE_URL,'https://app.dynamicmockups.com/api/v1'}",
        "export_format": "${oc.env:DYNAMIC_MOCKUPS_EXPORT_FORMAT,'jpg'}",
        "export_size": "${oc.env:DYNAMIC_MOCKUPS_EXPORT_SIZE,1500}",
        "default_mockup_uuid": "${oc.env:DYNAMIC_MOCKUPS_DEFAULT_MOCKUP_UUID,''}",
        "default_smart_object_uuid": "${oc.env:DYNAMIC_MOCKUPS_DEFAULT_SMART_UUID,''}",
    },
    "storage": {
        "bucket_artwork": "${oc.env:BUCKET_DESIGN,'design-files'}",
        "bucket_mockups": "${oc.env:BUCKET_MOCKUPS,'mockups'}",
        "bucket_proofs": "${oc.env:BUCKET_PROOFS,'proofs'}",
        "endpoint_url": "${oc.env:S3_ENDPOINT_URL,null}",
        "region_name": "${oc.env:S3_REGION,null}",
        "artwork_url_ttl": 3600,
        "proof_url_ttl": 86400,
    },
    "queue": {
        "concurrency": "${oc.env:PROOF_CONCURRENCY,2}",
        "max_attempts": "${oc.env:PROOF_MAX_ATTEMPTS,3}",
        "backoff_seconds": 5.0,
        "backoff_factor": 2.0,
    },
}


class ProofSettings(BaseModel):
    """
    Resolved configuration passed explicitly into every component.

    Nothing below reads process state after construction; tests build an
    instance directly and hand it to the component under test.
    """

    default_mockup_template: str = ""
    default_smart_object_slot: str = ""
    bucket_artwork: str = "design-files"
    bucket_mockups: str = "mockups"
    bucket_proofs: str = "proofs"
    export_format: str = "jpg"
    export_size: int = 1500

    dynamic_mockups_api_key: str = ""
    dynamic_mockups_base_url: str = "https://app.dynamicmockups.com/api/v1"
    s3_endpoint_url: Optional[str] = None
    s3_region_name: Optional[str] = None
    artwork_url_ttl: int = 3600
    proof_url_ttl: int = 86400

    database_path: Path = Path("data/proofs.db")
    concurrency: int = Field(default=2, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = 5.0
    backoff_factor: float = 2.0
    http_timeout: float = 30.0
    log_level: str = "INFO"


def _config_path() -> Optional[Path]:
    explicit = os.environ.get("PROOF_WORKER_CONFIG")
    if explicit:
        return Path(explicit)
    return next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    base = OmegaConf.create(DEFAULTS)
    layers = [base]

    config_path = _config_path()
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found at {config_path}")
        layers.append(OmegaConf.load(config_path))

    if overrides:
        layers.append(OmegaConf.create(overrides))

    return DictConfig(OmegaConf.merge(*layers))


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> ProofSettings:
    """
    Build ProofSettings from defaults, an optional config.yaml and overrides.

    Args:
        overrides: Nested values merged last (same shape as DEFAULTS)

    Returns:
        Validated settings; pydantic coerces the string values that
        environment interpolation produces.
    """
    config = make_runtime_config(overrides)
    resolved: Dict[str, Any] = OmegaConf.to_container(config, resolve=True)  # type: ignore[assignment]

    mockups = resolved["dynamic_mockups"]
    storage = resolved["storage"]
    queue = resolved["queue"]

    return ProofSettings(
        default_mockup_template=mockups["default_mockup_uuid"] or "",
        default_smart_object_slot=mockups["default_smart_object_uuid"] or "",
        bucket_artwork=storage["bucket_artwork"],
        bucket_mockups=storage["bucket_mockups"],
        bucket_proofs=storage["bucket_proofs"],
        export_format=str(mockups["export_format"]).lower(),
        export_size=mockups["export_size"],
        dynamic_mockups_api_key=mockups["api_key"] or "",
        dynamic_mockups_base_url=mockups["base_url"],
        s3_endpoint_url=storage["endpoint_url"] or None,
        s3_region_name=storage["region_name"] or None,
        artwork_url_ttl=storage["artwork_url_ttl"],
        proof_url_ttl=storage["proof_url_ttl"],
        database_path=Path(resolved["database_path"]),
        concurrency=queue["concurrency"],
        max_attempts=queue["max_attempts"],
        backoff_seconds=queue["backoff_seconds"],
        backoff_factor=queue["backoff_factor"],
        http_timeout=resolved["http_timeout"],
        log_level=resolved["log_level"],
    )
