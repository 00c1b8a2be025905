"""Snapshot file loading with validation.

Snapshot files describe current and desired state of rules or of a load
balancer in YAML. They feed the CLI; the controller itself receives the
same models from its informers.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .config import MAX_SNAPSHOT_FILE_SIZE_BYTES
from .models import LoadBalancerDocument, RulesDocument

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class SpecLoadError(Exception):
    """Raised when a snapshot file cannot be loaded or fails validation."""

    pass


def _read_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise SpecLoadError(f"Snapshot file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat snapshot file {path}: {e}") from e

    if file_size > MAX_SNAPSHOT_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Snapshot file exceeds maximum size of {MAX_SNAPSHOT_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read snapshot file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Snapshot file must contain a YAML mapping: {path}")

    # Kubernetes-style wrapper: apiVersion, kind, metadata, spec
    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec")
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {path}")
        return spec_data

    return raw_data


def load_snapshot(path: Path, model: type[M]) -> M:
    """Load a YAML snapshot file into ``model``.

    Raises:
        SpecLoadError: If the file is missing, too large, not YAML, or
            does not validate.
    """
    data = _read_mapping(path)

    try:
        snapshot = model.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info("Loaded %s from %s", model.__name__, path)
    return snapshot


def load_rules(path: Path) -> RulesDocument:
    return load_snapshot(path, RulesDocument)


def load_load_balancer(path: Path) -> LoadBalancerDocument:
    return load_snapshot(path, LoadBalancerDocument)
