"""
Declarative REST data set adapter
Provides configurable components for fetching, paging and shaping external service data
"""

from .config_loader import ConfigLoader, ConnectorSettings, EnvironmentError, configure_logging
from .criteria_options import CriteriaOptionsProvider
from .data_source_base import DataSourceBase
from .exceptions import ConfigurationError, ExternalAPIError, IncompleteResultError
from .expressions import ExpressionError, ExpressionEvaluator, JsonataEvaluator
from .http_client import HTTPClient, APIResponse
from .models import (
    CompleteResult, DataSet, DataSetMethod, DataSetResult, DataSetResultStatus,
    DataSourceConfig, PagingState, PendingResult, is_complete
)
from .pagination_strategy import PaginationFactory, Paginator, PaginatorError
from .rest_data_source import RestDataSource
from .service_data_iterator import (
    DEFAULT_CRITERIA_TRANSFORMERS, IteratorError, ServiceDataIterator
)
from .tokens import TokenError, resolve_tokens, resolve_tokens_with_undefined_default
from .value_comparator import compare_values

__version__ = "1.0.0"
__all__ = [
    'ConfigLoader',
    'ConnectorSettings',
    'EnvironmentError',
    'configure_logging',
    'CriteriaOptionsProvider',
    'DataSourceBase',
    'ConfigurationError',
    'ExternalAPIError',
    'IncompleteResultError',
    'ExpressionError',
    'ExpressionEvaluator',
    'JsonataEvaluator',
    'HTTPClient',
    'APIResponse',
    'CompleteResult',
    'DataSet',
    'DataSetMethod',
    'DataSetResult',
    'DataSetResultStatus',
    'DataSourceConfig',
    'PagingState',
    'PendingResult',
    'is_complete',
    'PaginationFactory',
    'Paginator',
    'PaginatorError',
    'RestDataSource',
    'DEFAULT_CRITERIA_TRANSFORMERS',
    'IteratorError',
    'ServiceDataIterator',
    'TokenError',
    'resolve_tokens',
    'resolve_tokens_with_undefined_default',
    'compare_values'
]
