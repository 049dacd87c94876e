from estateops.integrity.validator import (
    ARTIFACT_MISSING,
    CHECKSUM_MISMATCH,
    SIZE_MISMATCH,
    IntegrityValidator,
    validation_to_dict,
)

__all__ = [
    "IntegrityValidator",
    "ARTIFACT_MISSING",
    "SIZE_MISMATCH",
    "CHECKSUM_MISMATCH",
    "validation_to_dict",
]
