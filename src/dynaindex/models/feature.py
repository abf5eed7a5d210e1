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

# dynaindex/models/feature.py

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from shapely.geometry.base import BaseGeometry

from dynaindex.tools.geospatial import as_geometry


class Feature(BaseModel):
    """A feature as seen by the index: an identifier, a geometry and its attributes."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: str
    geometry: Optional[BaseGeometry] = None
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v: Any) -> str:
        if v is None or (isinstance(v, str) and not v):
            raise ValueError("Feature id must not be empty")
        return str(v)

    @field_validator("geometry", mode="before")
    @classmethod
    def validate_geometry(cls, v: Any) -> Optional[BaseGeometry]:
        if v is None:
            return None
        return as_geometry(v)

    def get(self, name: str, geometry_attribute: Optional[str] = None, id_attribute: Optional[str] = None) -> Any:
        """Value of an attribute, resolving the geometry and id attributes to the feature fields."""
        if name == geometry_attribute:
            return self.geometry
        if name == id_attribute and name not in self.properties:
            return self.id
        return self.properties.get(name)
