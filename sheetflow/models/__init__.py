"""Domain models for the sheetflow onboarding core.

Configuration (schema) models, mapping models, imported data and processed
row/error models used throughout the package.
"""

from .config_models import FieldConfig, ProcessingOptions, SheetConfig, ValidationRule, WorkbookConfig
from .field_mapping import FieldMapping, PipelineMappings, PipelineOptions
from .imported_data import ImportedData
from .processing_result import ChunkUpdate, ProcessingResult
from .row_data import DataRow, ValidationError

__all__ = [
    # Configuration models
    "FieldConfig",
    "ProcessingOptions",
    "SheetConfig",
    "ValidationRule",
    "WorkbookConfig",
    # Mapping models
    "FieldMapping",
    "PipelineMappings",
    "PipelineOptions",
    # Processing models
    "ImportedData",
    "DataRow",
    "ValidationError",
    "ChunkUpdate",
    "ProcessingResult",
]
