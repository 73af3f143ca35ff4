"""
Exceptions raised by the Stagehand browser tool
"""


class StagehandToolError(Exception):
    """Base class for tool errors"""


class CredentialsError(StagehandToolError):
    """The selected AI provider has no usable API key"""


class SchemaError(StagehandToolError, ValueError):
    """An extraction schema could not be built from the request"""


class UnsupportedOperationError(StagehandToolError, ValueError):
    """The requested operation is not one the tool knows"""
