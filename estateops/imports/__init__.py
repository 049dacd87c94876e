from estateops.imports.pipeline import ImportPipeline
from estateops.imports.records import LAND_REGISTRY_HEADERS, PropertySaleRecord, csv_template
from estateops.imports.sink import ImportSink, SqlPropertySaleSink
from estateops.imports.types import BatchResult, CsvValidationReport, ImportOptions, ImportParameters, ImportStatistics

__all__ = [
    "ImportPipeline",
    "ImportSink",
    "SqlPropertySaleSink",
    "ImportParameters",
    "ImportOptions",
    "ImportStatistics",
    "BatchResult",
    "CsvValidationReport",
    "PropertySaleRecord",
    "LAND_REGISTRY_HEADERS",
    "csv_template",
]
