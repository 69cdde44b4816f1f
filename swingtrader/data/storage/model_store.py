from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from swingtrader.models import ModelCoefficients
from swingtrader.utils.exceptions import ConfigError, ModelNotFoundError


class ModelStore:
    """JSON persistence for the exit model artifact."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, model: ModelCoefficients) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(model.model_dump_json(indent=2), encoding="utf-8")
        tmp_path.replace(self.path)
        logger.info(f"Saved exit model {model.version} to {self.path}")
        return self.path

    def load(self) -> ModelCoefficients:
        if not self.path.exists():
            raise ModelNotFoundError(self.path)
        try:
            model = ModelCoefficients.model_validate_json(self.path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise ConfigError(f"Model artifact {self.path} is invalid: {e}") from e
        logger.debug(f"Loaded exit model {model.version} ({model.training_samples} samples)")
        return model
