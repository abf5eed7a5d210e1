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

from pydantic_settings import BaseSettings, SettingsConfigDict


class IndexSettings(BaseSettings):
    """
    Manages the process-wide defaults of the index core.
    Settings are loaded from environment variables (prefix DYNAINDEX_) or a local .env file.
    """
    # Target number of ranges a single query may fan out into (per index).
    # Each range becomes a distinct scan request against the backend.
    SCAN_RANGES_TARGET: int = 2000

    # Maximum recursion levels of the range decomposer below each root block.
    # One level resolves one bit in every curve dimension.
    SCAN_RANGES_RECURSE: int = 7

    # Bits per dimension used by Z2/Z3 curves when an index does not override it.
    DEFAULT_PRECISION: int = 21

    # Number of shards used by curve indices when an index does not override it.
    DEFAULT_SHARDS: int = 4

    # Time binning period used by spatio-temporal indices: day, week, month or year.
    DEFAULT_TIME_PERIOD: str = "week"

    model_config = SettingsConfigDict(
        env_prefix="DYNAINDEX_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    def recursion_for(self, dimensions: int) -> int:
        """Bisection steps allowed below a root block for a curve of `dimensions` dimensions."""
        return max(1, self.SCAN_RANGES_RECURSE) * dimensions


# Create a single, importable instance of the settings
settings = IndexSettings()
