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

import logging
from functools import lru_cache
from typing import Any, List, Tuple, Union

import shapely
from pyproj import CRS, Transformer
from shapely import wkt
from shapely.geometry import box, shape
from shapely.geometry.base import BaseGeometry, BaseMultipartGeometry
from shapely.ops import transform

logger = logging.getLogger(__name__)

BBox = Tuple[float, float, float, float]

WHOLE_WORLD: BBox = (-180.0, -90.0, 180.0, 90.0)

WGS84 = "EPSG:4326"


class GeometryProcessingError(ValueError):
    """Custom exception for geometry conversion failures."""
    pass


def as_geometry(value: Any) -> BaseGeometry:
    """
    Converts a GeoJSON mapping, a WKT string or a geometry-like object
    (anything with `__geo_interface__`) into a Shapely geometry.
    """
    if isinstance(value, BaseGeometry):
        return value
    try:
        if isinstance(value, str):
            return wkt.loads(value)
        if isinstance(value, dict) or hasattr(value, "__geo_interface__"):
            return shape(value)
    except Exception as e:
        raise GeometryProcessingError(f"Invalid geometry: {e}") from e
    raise GeometryProcessingError(f"Unsupported geometry value: {value!r}")


def _same_crs(crs: Union[str, int, None]) -> bool:
    if crs is None:
        return True
    text = str(crs).upper()
    return text in ("4326", WGS84, "CRS84", "OGC:CRS84") or text.endswith("/CRS84") or text.endswith("EPSG/0/4326")


@lru_cache(maxsize=32)
def _transformer_to_wgs84(crs: str) -> Transformer:
    return Transformer.from_crs(CRS.from_user_input(crs), CRS(WGS84), always_xy=True)


def to_wgs84(geom: BaseGeometry, crs: Union[str, int, None] = None) -> BaseGeometry:
    """Transforms a geometry from `crs` to EPSG:4326 (lon/lat order)."""
    if _same_crs(crs):
        return geom
    try:
        transformer = _transformer_to_wgs84(str(crs))
        transformed = transform(transformer.transform, geom)
        logger.debug(f"Geometry transformed from {crs} to {WGS84}.")
        return transformed
    except Exception as e:
        raise GeometryProcessingError(f"Failed to transform geometry from {crs} to {WGS84}: {e}") from e


def split_antimeridian(bbox: BBox) -> List[BBox]:
    """
    Splits a bbox whose west edge is east of its east edge (it crosses the
    antimeridian) into two non-wrapping boxes.
    """
    xmin, ymin, xmax, ymax = bbox
    if xmin <= xmax:
        return [bbox]
    return [(xmin, ymin, WHOLE_WORLD[2], ymax), (WHOLE_WORLD[0], ymin, xmax, ymax)]


def geometry_bounds(geom: BaseGeometry) -> List[BBox]:
    """
    Bounding boxes of a geometry. Multi-part geometries yield one box per part,
    which keeps disjoint parts from inflating the covered area.
    """
    if geom.is_empty:
        return []
    if isinstance(geom, BaseMultipartGeometry):
        boxes = []
        for part in geom.geoms:
            boxes.extend(geometry_bounds(part))
        return boxes
    return [tuple(geom.bounds)]


def is_rectangle(geom: BaseGeometry) -> bool:
    """True if the geometry is exactly its own (non-degenerate) envelope."""
    if geom.is_empty or geom.geom_type != "Polygon":
        return False
    envelope = box(*geom.bounds)
    return envelope.area > 0 and shapely.equals(geom, envelope)

