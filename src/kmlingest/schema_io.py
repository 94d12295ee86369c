"""
YAML persistence of unified schemas.

A saved schema lets a later import skip the inference pass.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .domain.models import UnifiedSchema
from .utils import load_yaml_file


def schemas_to_yaml(schemas: Iterable[UnifiedSchema]) -> str:
    data = {"schemas": [schema.model_dump(mode="json") for schema in schemas]}
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


def save_schemas(schemas: Iterable[UnifiedSchema], path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(schemas_to_yaml(schemas), encoding="utf-8")
    return path


def load_schemas(path: Path) -> list[UnifiedSchema]:
    """
    Load schemas saved by save_schemas.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not valid YAML or does not describe schemas
    """
    content = load_yaml_file(Path(path))
    if not isinstance(content, dict) or not isinstance(content.get("schemas"), list):
        raise ValueError(f"{path} does not contain a 'schemas' list")
    try:
        return [UnifiedSchema.model_validate(item) for item in content["schemas"]]
    except ValidationError as e:
        raise ValueError(f"Invalid schema in {path}: {e}") from e
