"""JSON document helpers shared by the managers."""

import json
import os
from pathlib import Path
from typing import List, Type, TypeVar

from loguru import logger
from pydantic import BaseModel

ModelT = TypeVar("ModelT", bound=BaseModel)


def save_model(path: Path, model: BaseModel) -> None:
    """Write a model as JSON, replacing the previous document atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(model.model_dump(mode="json"), f, indent=2, default=str)
    os.replace(tmp_path, path)


def load_model(path: Path, model_class: Type[ModelT]) -> ModelT:
    """Load a Pydantic model from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return model_class(**json.load(f))


def load_models(directory: Path, model_class: Type[ModelT]) -> List[ModelT]:
    """Load every ``*.json`` document in a directory, skipping unreadable ones."""
    models: List[ModelT] = []
    if not directory.exists():
        return models
    for path in sorted(directory.glob("*.json")):
        try:
            models.append(load_model(path, model_class))
        except Exception as e:
            logger.error(f"Failed to load {model_class.__name__} from {path}: {e}")
    return models
