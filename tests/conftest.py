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

import os
# settings overrides from the environment would change defaults the tests rely on
for _key in [k for k in os.environ if k.startswith("DYNAINDEX_")]:
    del os.environ[_key]

from datetime import datetime, timezone

import pytest
from shapely.geometry import Point

from dynaindex.models import Feature, FeatureSchema
from dynaindex.planning.planner import QueryPlanner


@pytest.fixture
def schema():
    """Default schema: z3 (geom, dtg), z2 (geom) and id indices."""
    return FeatureSchema.create(name="observations")


@pytest.fixture
def attribute_schema():
    return FeatureSchema.from_user_data(
        "observations",
        {"dynaindex.indices.enabled": "z3,z2,attr:name,id"},
    )


@pytest.fixture
def planner(schema):
    return QueryPlanner(schema)


@pytest.fixture
def t0():
    return datetime(2024, 3, 14, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def features(t0):
    """A handful of point features around (45, 50) plus one far away."""
    return [
        Feature(id="inside-1", geometry=Point(45.0, 50.0), properties={"name": "bob", "age": 30, "dtg": t0}),
        Feature(id="inside-2", geometry=Point(45.5, 49.5), properties={"name": "alice", "age": 25, "dtg": t0}),
        Feature(id="far", geometry=Point(-120.0, -30.0), properties={"name": "carol", "age": 41, "dtg": t0}),
    ]
