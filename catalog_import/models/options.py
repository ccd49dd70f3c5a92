"""
Import options.
Validated once at submission and frozen for the lifetime of the job.
"""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .row import normalize_header


class ImportMode(str, Enum):
    """Whether mutating catalog calls are issued."""

    DRY_RUN = "dry_run"
    EXECUTE = "execute"


class UpsertStrategy(str, Enum):
    """Which field decides between updating an existing entity and creating a new one."""

    OFF = "off"
    HANDLE = "handle"
    SKU = "sku"
    EXTERNAL_ID = "external_id"


class ImageStrategy(str, Enum):
    """How row images combine with the images already on the entity."""

    MERGE = "merge"
    REPLACE = "replace"


class ImportOptions(BaseModel):
    """Options snapshot for one import job."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    mode: ImportMode = ImportMode.DRY_RUN
    upsert: UpsertStrategy = UpsertStrategy.OFF
    image_strategy: ImageStrategy = ImageStrategy.REPLACE
    prune_missing_variants: bool = False
    skip_image_validation: bool = False
    unarchive: bool = False

    # Source header -> canonical field, applied before built-in aliases
    column_mapping: Dict[str, str] = Field(default_factory=dict)

    @field_validator("column_mapping")
    @classmethod
    def normalize_mapping(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {normalize_header(k): normalize_header(val) for k, val in v.items() if k and val}

    @property
    def is_dry_run(self) -> bool:
        return self.mode == ImportMode.DRY_RUN

    def describe(self) -> Dict[str, object]:
        """Plain dict for reports and status responses."""
        return self.model_dump(mode="json")


def parse_options(data: Optional[Dict]) -> ImportOptions:
    """Build options from user input; raises pydantic.ValidationError on bad values."""
    return ImportOptions(**(data or {}))
