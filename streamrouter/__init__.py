"""streamrouter -- attribute-aware routing for DynamoDB stream change events."""

from streamrouter.diff import (
    deep_equal,
    diff_attributes,
    get_nested_value,
    has_attribute_change,
    matches_filter,
)
from streamrouter.errors import ConfigurationError, DeferredHandlerNotFoundError, StreamRouterError
from streamrouter.matchers import Discriminator, Validator
from streamrouter.middleware import unmarshall_middleware
from streamrouter.models import (
    MISSING,
    AttributeChange,
    BatchItem,
    ChangeKind,
    DiffResult,
    FilterSpec,
    HandlerContext,
    PrimaryKeyConfig,
    ProcessingResult,
    StreamViewType,
    ValidationTarget,
)
from streamrouter.router import HandlerRegistration, StreamRouter

__version__ = "0.1.0"

__all__ = [
    "MISSING",
    "AttributeChange",
    "BatchItem",
    "ChangeKind",
    "ConfigurationError",
    "DeferredHandlerNotFoundError",
    "DiffResult",
    "Discriminator",
    "FilterSpec",
    "HandlerContext",
    "HandlerRegistration",
    "PrimaryKeyConfig",
    "ProcessingResult",
    "StreamRouter",
    "StreamRouterError",
    "StreamViewType",
    "ValidationTarget",
    "Validator",
    "__version__",
    "deep_equal",
    "diff_attributes",
    "get_nested_value",
    "has_attribute_change",
    "matches_filter",
    "unmarshall_middleware",
]
