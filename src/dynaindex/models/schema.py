#    Copyright 2025 FAO
# 
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
# 
#        http://www.apache.org/licenses/LICENSE-2.0
# 
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
# 
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

# dynaindex/models/schema.py

import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from dynaindex.config import settings
from dynaindex.curve.binned_time import TimePeriod
from dynaindex.curve.dimensions import validate_precision
from dynaindex.exceptions import ConfigurationError, SchemaValidationError
from dynaindex.index.sharding import ShardMode, validate_shard_count

logger = logging.getLogger(__name__)

# --- User data keys ---
INDICES_KEY = "dynaindex.indices.enabled"
Z3_SHARDS_KEY = "dynaindex.z3.shards"
Z2_SHARDS_KEY = "dynaindex.z2.shards"
ATTR_SHARDS_KEY = "dynaindex.attr.shards"
Z3_INTERVAL_KEY = "dynaindex.z3.interval"
PRECISION_KEY = "dynaindex.curve.precision"
SCAN_RANGES_TARGET_KEY = "dynaindex.scan.ranges.target"


class IndexKind(str, Enum):
    Z3 = "z3"
    Z2 = "z2"
    ATTRIBUTE = "attr"
    ID = "id"


_ATTRIBUTE_COUNTS = {
    IndexKind.Z3: 2,
    IndexKind.Z2: 1,
    IndexKind.ATTRIBUTE: 1,
    IndexKind.ID: 0,
}


def _raise_configuration_error(e: ValidationError, what: str):
    """Re-raises the configuration error behind a validation error, or wraps it."""
    for error in e.errors():
        cause = (error.get("ctx") or {}).get("error")
        if isinstance(cause, ConfigurationError):
            raise cause from e
    raise SchemaValidationError(f"Invalid {what}", e) from e


class IndexConfig(BaseModel):
    """Configuration of a single index of a schema."""
    model_config = ConfigDict(frozen=True)

    kind: IndexKind
    attributes: List[str] = Field(default_factory=list, description="Attributes covered, in key order")
    precision: int = Field(default_factory=lambda: settings.DEFAULT_PRECISION, description="Curve bits per dimension")
    shards: int = Field(default_factory=lambda: settings.DEFAULT_SHARDS, description="Number of key shards (1-127)")
    shard_mode: ShardMode = Field(ShardMode.HASH)
    period: TimePeriod = Field(default_factory=lambda: TimePeriod.parse(settings.DEFAULT_TIME_PERIOD))

    @field_validator("precision")
    @classmethod
    def check_precision(cls, v: int) -> int:
        return validate_precision(v)

    @field_validator("shards")
    @classmethod
    def check_shards(cls, v: int) -> int:
        return validate_shard_count(v)

    @field_validator("period", mode="before")
    @classmethod
    def check_period(cls, v: Any) -> TimePeriod:
        return TimePeriod.parse(v)

    @model_validator(mode="after")
    def validate_attributes(self) -> "IndexConfig":
        expected = _ATTRIBUTE_COUNTS[self.kind]
        if len(self.attributes) != expected:
            raise ValueError(
                f"Index '{self.kind.value}' covers {expected} attribute(s), got: {self.attributes}"
            )
        return self

    @classmethod
    def create(cls, **data) -> "IndexConfig":
        try:
            return cls(**data)
        except ValidationError as e:
            _raise_configuration_error(e, "index configuration")

    @property
    def name(self) -> str:
        return ":".join([self.kind.value, *self.attributes])


class FeatureSchema(BaseModel):
    """
    Index metadata of a feature type: which attributes hold the geometry, the
    date and the identifier, and which indices are configured, in declaration
    order. When no indices are given, Z3 (if there is a date), Z2 and id are used.
    """
    name: str
    geometry_attribute: Optional[str] = "geom"
    dtg_attribute: Optional[str] = "dtg"
    id_attribute: str = "id"
    indices: List[IndexConfig] = Field(default_factory=list)
    scan_ranges_target: int = Field(default_factory=lambda: settings.SCAN_RANGES_TARGET, gt=0)
    user_data: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def default_indices(self) -> "FeatureSchema":
        if not self.indices:
            self.indices = _default_indices(self.geometry_attribute, self.dtg_attribute)
        names = [i.name for i in self.indices]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate indices in schema '{self.name}': {names}")
        return self

    @classmethod
    def create(cls, **data) -> "FeatureSchema":
        """
        Builds a schema, surfacing configuration problems as `ConfigurationError`s.

        Raises:
            ConfigurationError: An invalid precision, shard count or period keeps its
                                specific type; anything else is a SchemaValidationError.
        """
        try:
            return cls(**data)
        except ValidationError as e:
            _raise_configuration_error(e, f"schema '{data.get('name')}'")

    @classmethod
    def from_user_data(
        cls,
        name: str,
        user_data: Mapping[str, str],
        geometry_attribute: Optional[str] = "geom",
        dtg_attribute: Optional[str] = "dtg",
        id_attribute: str = "id",
    ) -> "FeatureSchema":
        """Builds a schema from `dynaindex.*` user data keys."""
        precision = _int(user_data, PRECISION_KEY, settings.DEFAULT_PRECISION)
        shards = {
            IndexKind.Z3: _int(user_data, Z3_SHARDS_KEY, settings.DEFAULT_SHARDS),
            IndexKind.Z2: _int(user_data, Z2_SHARDS_KEY, settings.DEFAULT_SHARDS),
            IndexKind.ATTRIBUTE: _int(user_data, ATTR_SHARDS_KEY, settings.DEFAULT_SHARDS),
            IndexKind.ID: 1,
        }
        period = user_data.get(Z3_INTERVAL_KEY, settings.DEFAULT_TIME_PERIOD)

        indices = []
        enabled = user_data.get(INDICES_KEY)
        if enabled:
            for token in (t.strip() for t in enabled.split(",")):
                if not token:
                    continue
                kind_name, _, attribute = token.partition(":")
                try:
                    kind = IndexKind(kind_name.strip().lower())
                except ValueError as e:
                    raise SchemaValidationError(f"Unknown index '{token}' in {INDICES_KEY}", e) from e
                if kind == IndexKind.Z3:
                    attributes = [geometry_attribute, dtg_attribute]
                elif kind == IndexKind.Z2:
                    attributes = [geometry_attribute]
                elif kind == IndexKind.ATTRIBUTE:
                    attributes = [attribute.strip()] if attribute.strip() else []
                else:
                    attributes = []
                indices.append(dict(
                    kind=kind, attributes=attributes, precision=precision, shards=shards[kind], period=period,
                ))
        else:
            for index in _default_indices(geometry_attribute, dtg_attribute):
                indices.append(dict(
                    kind=index.kind, attributes=index.attributes, precision=precision,
                    shards=shards[index.kind], period=period,
                ))

        data = dict(
            name=name,
            geometry_attribute=geometry_attribute,
            dtg_attribute=dtg_attribute,
            id_attribute=id_attribute,
            indices=indices,
            user_data=dict(user_data),
        )
        if SCAN_RANGES_TARGET_KEY in user_data:
            data["scan_ranges_target"] = _int(user_data, SCAN_RANGES_TARGET_KEY, settings.SCAN_RANGES_TARGET)
        schema = cls.create(**data)
        logger.debug(f"Schema '{name}' configured with indices: {[i.name for i in schema.indices]}")
        return schema

    def index(self, name: str) -> Optional[IndexConfig]:
        return next((i for i in self.indices if i.name == name), None)


def _int(user_data: Mapping[str, str], key: str, default: int) -> int:
    value = user_data.get(key)
    if value is None:
        return default
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise SchemaValidationError(f"User data key '{key}' must be an integer, got: {value!r}", e) from e


def _default_indices(geometry_attribute: Optional[str], dtg_attribute: Optional[str]) -> List[IndexConfig]:
    indices = []
    if geometry_attribute and dtg_attribute:
        indices.append(IndexConfig(kind=IndexKind.Z3, attributes=[geometry_attribute, dtg_attribute]))
    if geometry_attribute:
        indices.append(IndexConfig(kind=IndexKind.Z2, attributes=[geometry_attribute]))
    indices.append(IndexConfig(kind=IndexKind.ID, shards=1))
    return indices
