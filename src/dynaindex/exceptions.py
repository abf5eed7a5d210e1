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

"""
This module defines the hierarchy of exceptions raised by the index core.

Configuration and bounds errors are fatal for the operation that raised them and are
always propagated to the caller. Range-decomposition degradation is never an error:
callers receive wider ranges and filter the extra rows with the secondary predicate.
"""


class DynaIndexError(Exception):
    """Base class for all index-related exceptions."""
    def __init__(self, message, original_exception=None):
        super().__init__(message)
        self.original_exception = original_exception
        self.details = str(original_exception) if original_exception else "No additional details."

    def __str__(self):
        if self.original_exception is None:
            return super().__str__()
        return f"{super().__str__()} (Details: {self.details})"


# --- Configuration errors (raised at schema / index creation time) ---

class ConfigurationError(DynaIndexError, ValueError):
    """Raised when an index or schema configuration is invalid."""
    pass

class InvalidPrecisionError(ConfigurationError):
    """Raised when curve precision bits are outside [1,21] or overflow the key width."""
    pass

class InvalidShardCountError(ConfigurationError):
    """Raised when a shard count is outside [1,127]."""
    pass

class InvalidTimePeriodError(ConfigurationError):
    """Raised when a time period name is not one of day, week, month, year."""
    pass

class SchemaValidationError(ConfigurationError):
    """Raised when a schema or index configuration body fails Pydantic validation."""
    pass


# --- Write path errors ---

class OutOfBoundsError(DynaIndexError, ValueError):
    """Raised when a value outside a dimension's domain is encoded in strict mode."""
    pass

class UnsupportedGeometryError(DynaIndexError, ValueError):
    """Raised when a geometry cannot be indexed by a point curve (e.g. polygons on Z2/Z3)."""
    pass


# --- Filter errors ---

class FilterParseError(ValueError):
    """Raised when a CQL/ECQL filter cannot be parsed or converted."""
    pass

class FilterEvaluationError(DynaIndexError):
    """Raised when a residual filter contains an expression that cannot be evaluated."""
    pass


def is_configuration_error(exc: Exception) -> bool:
    """Check if an exception should abort schema creation."""
    return isinstance(exc, ConfigurationError)


def get_error_context(exc: Exception) -> dict:
    """
    Extract context information from an index exception, e.g. for error responses
    produced by a serving layer.

    Returns:
        Dictionary with keys:
        - 'is_configuration' (bool): True if this is a configuration-type error
        - 'error_type' (str): Class name of the exception
        - 'message' (str): Exception message
        - 'cause' (str|None): Class name of the wrapped exception if any
    """
    original_exc = getattr(exc, 'original_exception', None)
    return {
        'is_configuration': is_configuration_error(exc),
        'error_type': exc.__class__.__name__,
        'message': str(exc),
        'cause': original_exc.__class__.__name__ if original_exc is not None else None,
    }
