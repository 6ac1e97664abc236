"""
Models module for declarative data set descriptors and pipeline results
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional, Union

from .exceptions import ConfigurationError


class DataSetResultStatus(str, Enum):
    COMPLETE = 'complete'
    PENDING = 'pending'


class PagingType(str, Enum):
    NEXT_TOKEN = 'nextToken'
    PAGE_BASED = 'pageBased'
    OFFSET_AND_LIMIT = 'offsetAndLimit'
    GRAPHQL_CONNECTIONS = 'graphqlConnections'


class PageUntilCondition(str, Enum):
    NO_NEXT_TOKEN = 'noNextToken'
    NO_DATA_LEFT = 'noDataLeft'
    REACH_TOTAL_COUNT = 'reachTotalCount'
    NO_NEXT_PAGE = 'noNextPage'


class NextTokenType(str, Enum):
    TOKEN = 'token'
    URL = 'url'
    SEARCH_ARRAY = 'searchArray'


class PagingLevel(str, Enum):
    JOB = 'job'
    CONNECTOR = 'connector'


class DataSetMethod(str, Enum):
    GET = 'GET'
    POST = 'POST'
    PATCH = 'PATCH'
    PUT = 'PUT'


METHODS_WITH_BODY = (DataSetMethod.POST, DataSetMethod.PATCH, DataSetMethod.PUT)


class IteratorSource(str, Enum):
    DATA_SET = 'dataSet'
    CRITERIA = 'criteria'


class PagingState(str, Enum):
    """How the data source is being driven by a service data iterator"""
    NONE = 'none'
    ITERATION_PLAN = 'iterationPlan'
    SINGLE_ITERATION = 'singleIteration'
    BATCHED_ITERATION = 'batchedIteration'


@dataclass
class CompleteResult:
    """Successful data set retrieval"""
    data: Any
    source: Optional[str] = None
    headers: Dict[str, List[str]] = field(default_factory=dict)
    next_page: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    error_info: Optional[Dict[str, Any]] = None

    @property
    def status(self) -> DataSetResultStatus:
        return DataSetResultStatus.COMPLETE


@dataclass
class PendingResult:
    """Retrieval did not complete and should be retried after `delay` seconds"""
    delay: float
    max_retry: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> DataSetResultStatus:
        return DataSetResultStatus.PENDING


DataSetResult = Union[CompleteResult, PendingResult]


def is_complete(result: DataSetResult) -> bool:
    return result.status is DataSetResultStatus.COMPLETE


@dataclass(frozen=True)
class DataSet:
    """
    Declarative recipe for retrieving and shaping one kind of external data

    Field names mirror the JSON declaration; camelCase keys are mapped to
    snake_case attributes by `from_dict` and `property` becomes
    `property_path`.
    """
    url: str
    result: str = 'array'
    method: DataSetMethod = DataSetMethod.GET
    description: Optional[str] = None
    query: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    property_path: Optional[str] = None
    joins: Optional[List[Dict[str, Any]]] = None
    lookups: Optional[List[Dict[str, Any]]] = None
    filter: Optional[List[Dict[str, Any]]] = None
    transform: Optional[Dict[str, Any]] = None
    sort: Optional[List[Dict[str, Any]]] = None
    paging_scheme: Optional[Dict[str, Any]] = None
    is_absolute_url: bool = False

    VALID_RESULTS = ('array', 'object')

    @classmethod
    def from_dict(cls, name: str, definition: Dict[str, Any]) -> 'DataSet':
        """
        Build a DataSet from its JSON declaration

        Args:
            name: Name of the data set, used in error messages
            definition: Parsed JSON object for the data set

        Returns:
            DataSet instance

        Raises:
            ConfigurationError: If the declaration is missing a url or has
                an unsupported result type or method
        """
        if not isinstance(definition, dict):
            raise ConfigurationError(f"Data set '{name}' must be a JSON object")

        url = definition.get('url')
        if not isinstance(url, str):
            raise ConfigurationError(f"Data set '{name}' must declare a url")

        result = definition.get('result', 'array')
        if result not in cls.VALID_RESULTS:
            raise ConfigurationError(
                f"Data set '{name}' has invalid result '{result}'. "
                f"Expected one of: {', '.join(cls.VALID_RESULTS)}"
            )

        method = definition.get('method') or DataSetMethod.GET.value
        try:
            method = DataSetMethod(str(method).upper())
        except ValueError:
            raise ConfigurationError(
                f"Data set '{name}' uses unsupported method '{method}'"
            )

        return cls(
            url=url,
            result=result,
            method=method,
            description=definition.get('description'),
            query=dict(definition.get('query') or {}),
            body=definition.get('body'),
            headers=dict(definition.get('headers') or {}),
            property_path=definition.get('property'),
            joins=definition.get('joins'),
            lookups=definition.get('lookups'),
            filter=definition.get('filter'),
            transform=definition.get('transform'),
            sort=definition.get('sort'),
            paging_scheme=definition.get('pagingScheme'),
            is_absolute_url=bool(definition.get('isAbsoluteUrl', False))
        )

    @property
    def is_array_result(self) -> bool:
        return self.result == 'array'


@dataclass
class DataSourceConfig:
    """Declarative configuration for a REST data source"""
    base_url: Optional[str]
    data_sets: Dict[str, DataSet] = field(default_factory=dict)
    value_lookups: Dict[str, Dict[str, Any]] = field(default_factory=dict)
