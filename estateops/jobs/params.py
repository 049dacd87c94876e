from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from estateops.jobs.errors import JobParameterError

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_parameters(model: type[ModelT], raw: dict[str, Any] | None) -> ModelT:
    try:
        return model.model_validate(raw or {})
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'parameters'}: {error['msg']}"
            for error in exc.errors()
        )
        raise JobParameterError(f"Invalid parameters: {details}") from exc
