"""
PaginationStrategy module for the declarative paging schemes of a data set

Each paginator computes the paging parameters of the next request and
decides, from the response, whether another page exists.
"""

import copy
import json
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Union
from urllib.parse import quote, urljoin, urlsplit

from .exceptions import ConfigurationError
from .expressions import ExpressionEvaluator, JsonataEvaluator
from .models import (
    DataSet, DataSetMethod, NextTokenType, PageUntilCondition, PagingType
)

HEADER_PREFIX = 'header:'  # Property is read from a response header
PROPERTY_ACCESSORS = ('@odata.nextLink',)  # Read literally, never evaluated

Headers = Dict[str, List[str]]


class PaginatorError(ConfigurationError):
    """Raised when a paging scheme or paged request is misconfigured"""
    pass


class NotStarted:
    """Page state before any request has been paginated"""

    def __repr__(self) -> str:
        return 'NotStarted'


NOT_STARTED = NotStarted()


@dataclass(frozen=True)
class AtPage:
    """Page state after a request has been paginated"""
    value: Union[int, str, None]


PageState = Union[NotStarted, AtPage]


@dataclass
class PagedRequest:
    """Request shape with paging parameters applied"""
    paged_relative_url: str
    paged_message_body: Optional[Any]


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _to_positive_int(value: Any) -> Optional[int]:
    number = _to_number(value)
    if number is None or number <= 0 or not number.is_integer():
        return None
    return int(number)


def _parse_int(value: Any) -> Optional[int]:
    """Parse the leading integer of a header value, e.g. '42' or '42 items'"""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    match = re.match(r'\s*([-+]?\d+)', str(value)) if value is not None else None
    return int(match.group(1)) if match else None


def set_path(target: Dict[str, Any], path: str, value: Any) -> Dict[str, Any]:
    """Set `value` at a dotted key path, creating intermediate objects"""
    parts = path.split('.')
    node = target
    for part in parts[:-1]:
        if not isinstance(node.get(part), dict):
            node[part] = {}
        node = node[part]
    node[parts[-1]] = value
    return target


def calc_url_delimiter(relative_url: str, base_url: Optional[str] = None) -> str:
    """Return '&' if the URL already has a query string, '?' otherwise"""
    url = urljoin(base_url, relative_url) if base_url else relative_url
    return '&' if urlsplit(url).query else '?'


def is_valid_url(token: Any, base_url: Optional[str] = None) -> bool:
    try:
        url = urljoin(base_url, str(token)) if base_url else str(token)
        parts = urlsplit(url)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)


class Paginator(ABC):
    """Base class for the paginators built by PaginationFactory"""

    scheme_type: PagingType
    supported_conditions: tuple = ()

    def __init__(self, paging_scheme: Dict[str, Any],
                 evaluator: Optional[ExpressionEvaluator] = None):
        self.paging_scheme = paging_scheme
        self.request: Dict[str, Any] = paging_scheme.get('request') or {}
        self.response: Dict[str, Any] = paging_scheme.get('response') or {}
        self.page_until: Optional[str] = paging_scheme.get('pageUntil')
        self.evaluator = evaluator or JsonataEvaluator()
        self.page_state: PageState = NOT_STARTED

    @property
    def current_page(self) -> Union[int, str, None]:
        """Last page value issued, or None before the first request"""
        return self.page_state.value if isinstance(self.page_state, AtPage) else None

    def paginate_request(self, relative_url: str, base_url: Optional[str] = None,
                         message_body: Optional[Any] = None,
                         method: Optional[str] = None,
                         page: Optional[str] = None) -> PagedRequest:
        """
        Add paging parameters to a request

        GET (and any method without a body) paginates the query string,
        POST paginates the message body.

        Args:
            relative_url: Service-relative URL of the data set
            base_url: Base URL relative URLs stem from
            message_body: Body of the HTTP request
            method: HTTP method of the data set
            page: Page value returned by a previous `get_next_page`; None
                requests the first page

        Returns:
            PagedRequest with the paged URL and body
        """
        paged_relative_url = relative_url
        paged_message_body = message_body
        if method == DataSetMethod.POST:
            paged_message_body = self.paginate_message_body(message_body, page)
        else:
            paged_relative_url = self.paginate_query_string(relative_url, base_url, page)
        return PagedRequest(paged_relative_url, paged_message_body)

    @abstractmethod
    def paginate_query_string(self, relative_url: str, base_url: Optional[str] = None,
                              page: Optional[str] = None) -> str:
        ...

    @abstractmethod
    def paginate_message_body(self, message_body: Optional[Any],
                              page: Optional[str] = None) -> Dict[str, Any]:
        ...

    @abstractmethod
    def get_next_page(self, data_set: DataSet, data: Any,
                      headers: Optional[Headers] = None,
                      base_url: Optional[str] = None) -> Optional[str]:
        """
        Return the next page value, or None once all data has been gathered

        Args:
            data_set: Data set being retrieved
            data: Response body of the current page
            headers: Response headers of the current page
            base_url: Base URL relative URLs stem from
        """
        ...

    def validate_common(self) -> Optional[str]:
        if self.page_until is not None and self.page_until not in self.supported_conditions:
            return (f"Paging condition '{self.page_until}' is not supported "
                    f"for {self.scheme_type.value} schemes.")
        return None

    def raise_if_invalid(self, error: Optional[str]) -> None:
        error = error or self.validate_common()
        if error:
            raise PaginatorError(error)

    def is_first_page(self, page: Optional[str]) -> bool:
        return page is None

    def get_size_of_data_array(self, data_set: DataSet, data: Any) -> int:
        if data_set.property_path:
            data = self.get_property_value(data, data_set.property_path)
        return len(data) if isinstance(data, list) else 0

    def get_header_value(self, headers: Headers, name: str) -> Optional[str]:
        value = headers.get(name)
        if value is None:
            lowered = name.lower()
            value = next((v for k, v in headers.items() if k.lower() == lowered), None)
        if isinstance(value, list):
            value = value[0] if value else None
        return value

    def get_property_value(self, data: Any, expression: str) -> Any:
        return self.evaluator.compile(expression).evaluate(data)

    def ensure_data_set_array(self, data_set: DataSet) -> None:
        if not data_set.is_array_result and not data_set.filter:
            raise PaginatorError(
                f"Expected result for paginated requests must be of type array "
                f"({self.scheme_type.value} scheme)."
            )

    def ensure_message_body(self, message_body: Any) -> None:
        if not message_body or not isinstance(message_body, dict):
            raise PaginatorError(
                f"Invalid POST request body for {self.scheme_type.value} scheme: "
                f"{json.dumps(message_body, default=str)}"
            )

    def read_total_expected(self, data: Any, headers: Optional[Headers]) -> Optional[float]:
        """Read the expected total from a header or a body expression"""
        total_count = self.response.get('totalCount')
        if total_count.startswith(HEADER_PREFIX):
            if headers is None:
                return None
            raw = self.get_header_value(headers, total_count[len(HEADER_PREFIX):])
            parsed = _parse_int(raw)
            return float(parsed) if parsed is not None else None
        return _to_number(self.get_property_value(data, total_count))

    def require_numeric_page(self) -> int:
        if not isinstance(self.page_state, AtPage) or self.page_state.value is None:
            raise PaginatorError(
                f"currentPage must be defined while paginating request to external "
                f"service ({self.scheme_type.value} scheme)."
            )
        return int(self.page_state.value)

    def numeric_page(self, page: Optional[str], starting_value: int) -> int:
        if self.is_first_page(page):
            return starting_value
        number = _to_number(page)
        if number is None:
            raise PaginatorError(
                f"Invalid page value '{page}' for {self.scheme_type.value} scheme."
            )
        return int(number)


class NextTokenPaginator(Paginator):
    """
    REST next-token pagination continues paging
    until a token is no longer found in the response
    """

    scheme_type = PagingType.NEXT_TOKEN
    supported_conditions = (PageUntilCondition.NO_NEXT_TOKEN.value,)

    def __init__(self, paging_scheme: Dict[str, Any],
                 evaluator: Optional[ExpressionEvaluator] = None):
        super().__init__(paging_scheme, evaluator)
        self.raise_if_invalid(self.validate_paging_scheme())

        self.token_type = NextTokenType(paging_scheme['tokenType'])
        self.limit_parameter: Optional[str] = self.request.get('limitParameter')
        self.limit_value = _to_positive_int(self.request.get('limitValue'))
        self.token_parameter: Optional[str] = self.request.get('tokenParameter')

    def validate_paging_scheme(self) -> Optional[str]:
        scheme_type = self.scheme_type.value
        limit_parameter = self.request.get('limitParameter')
        limit_value = self.request.get('limitValue')
        if limit_parameter or limit_value is not None:
            if not limit_parameter:
                return f"Request parameters must be defined for {scheme_type} schemes."
            if limit_value is None:
                return (f"Limit value must be defined if request parameters are defined "
                        f"for {scheme_type} schemes.")
            if _to_positive_int(limit_value) is None:
                return f"Limit value {limit_value} must be a positive integer for {scheme_type} schemes."
        if self.page_until == PageUntilCondition.NO_NEXT_TOKEN and not self.response.get('nextToken'):
            return f"Next token path must be defined for paging condition: {self.page_until}."
        token_type = self.paging_scheme.get('tokenType')
        if not token_type:
            return f"Token type must be defined for {scheme_type} schemes."
        if token_type not in {t.value for t in NextTokenType}:
            return f"Invalid token type '{token_type}' for {scheme_type} schemes."
        if (token_type in (NextTokenType.TOKEN, NextTokenType.SEARCH_ARRAY)
                and not self.request.get('tokenParameter')):
            return f"Token parameter must be defined for {scheme_type} schemes."
        return None

    def paginate_query_string(self, relative_url: str, base_url: Optional[str] = None,
                              page: Optional[str] = None) -> str:
        self.page_state = AtPage(page)
        delimiter = calc_url_delimiter(relative_url, base_url)
        if self.is_first_page(page):
            if not self.limit_parameter:
                return relative_url
            return f"{relative_url}{delimiter}{self.limit_parameter}={self.limit_value}"

        if self.token_type == NextTokenType.URL:
            return page
        if self.token_type == NextTokenType.TOKEN:
            encoded = quote(str(page), safe="-_.!~*'()")
            if not self.limit_parameter:
                return f"{relative_url}{delimiter}{self.token_parameter}={encoded}"
            return (f"{relative_url}{delimiter}{self.limit_parameter}={self.limit_value}"
                    f"&{self.token_parameter}={encoded}")
        raise PaginatorError(
            f"Unable to paginate querystring with token type {self.token_type.value} "
            f"for {self.scheme_type.value} schemes."
        )

    def paginate_message_body(self, message_body: Optional[Any],
                              page: Optional[str] = None) -> Dict[str, Any]:
        self.page_state = AtPage(page)
        self.ensure_message_body(message_body)
        if self.token_type not in (NextTokenType.TOKEN, NextTokenType.SEARCH_ARRAY):
            raise PaginatorError(
                f"POST method pagination does not support {self.token_type.value} tokens "
                f"for {self.scheme_type.value} schemes. Type must be token or searchArray."
            )
        body = copy.deepcopy(message_body)
        if self.limit_parameter:
            set_path(body, self.limit_parameter, self.limit_value)
        if not self.is_first_page(page):
            token = (self.format_search_array_token(page)
                     if self.token_type == NextTokenType.SEARCH_ARRAY else page)
            set_path(body, self.token_parameter, token)
        return body

    def get_next_page(self, data_set: DataSet, data: Any,
                      headers: Optional[Headers] = None,
                      base_url: Optional[str] = None) -> Optional[str]:
        self.ensure_data_set_array(data_set)
        expression = self.response.get('nextToken')
        if self.page_until != PageUntilCondition.NO_NEXT_TOKEN or not expression:
            return None

        if expression in PROPERTY_ACCESSORS:
            next_token = data.get(expression) if isinstance(data, dict) else None
        elif expression.startswith(HEADER_PREFIX):
            next_token = (self.get_header_value(headers, expression[len(HEADER_PREFIX):])
                          if headers is not None else None)
        else:
            next_token = self.get_property_value(data, expression)

        if next_token is None or next_token == '':
            return None  # Last page
        if self.token_type == NextTokenType.URL and not is_valid_url(next_token, base_url):
            raise PaginatorError(f"Detected invalid url: {next_token}")
        return str(next_token)

    @staticmethod
    def format_search_array_token(search_array: str) -> Any:
        """Convert a token such as '[123456789, "c8b8e4edf184a64"]' into a list"""
        try:
            parsed = json.loads(search_array)
        except (TypeError, ValueError):
            return search_array
        return parsed if isinstance(parsed, list) else search_array


class PageBasedPaginator(Paginator):
    """
    REST page-based pagination begins paging at an initial value
    and increments the page value by 1 after each page
    """

    scheme_type = PagingType.PAGE_BASED
    supported_conditions = (PageUntilCondition.NO_DATA_LEFT.value,
                            PageUntilCondition.REACH_TOTAL_COUNT.value)

    def __init__(self, paging_scheme: Dict[str, Any],
                 evaluator: Optional[ExpressionEvaluator] = None):
        super().__init__(paging_scheme, evaluator)
        self.raise_if_invalid(self.validate_paging_scheme())

        self.page_parameter: str = self.request['pageParameter']
        self.page_starting_value = int(_to_number(self.request['pageStartingValue']))
        self.limit_parameter: str = self.request['limitParameter']
        self.limit_value = _to_positive_int(self.request['limitValue'])

    def validate_paging_scheme(self) -> Optional[str]:
        scheme_type = self.scheme_type.value
        if (_to_number(self.request.get('pageStartingValue')) is None
                or not self.request.get('pageParameter')
                or not self.request.get('limitParameter')):
            return f"Request parameters must be defined for {scheme_type} schemes."
        limit_value = self.request.get('limitValue')
        if _to_positive_int(limit_value) is None:
            return f"Limit value {limit_value} must be a positive integer for {scheme_type} schemes."
        if self.page_until == PageUntilCondition.REACH_TOTAL_COUNT and not self.response.get('totalCount'):
            return f"totalCount must be defined for paging condition: {self.page_until}."
        return None

    def paginate_query_string(self, relative_url: str, base_url: Optional[str] = None,
                              page: Optional[str] = None) -> str:
        current_page = self.numeric_page(page, self.page_starting_value)
        self.page_state = AtPage(current_page)
        delimiter = calc_url_delimiter(relative_url, base_url)
        return (f"{relative_url}{delimiter}{self.page_parameter}={current_page}"
                f"&{self.limit_parameter}={self.limit_value}")

    def paginate_message_body(self, message_body: Optional[Any],
                              page: Optional[str] = None) -> Dict[str, Any]:
        current_page = self.numeric_page(page, self.page_starting_value)
        self.page_state = AtPage(current_page)
        self.ensure_message_body(message_body)
        body = copy.deepcopy(message_body)
        set_path(body, self.page_parameter, current_page)
        set_path(body, self.limit_parameter, self.limit_value)
        return body

    def get_next_page(self, data_set: DataSet, data: Any,
                      headers: Optional[Headers] = None,
                      base_url: Optional[str] = None) -> Optional[str]:
        self.ensure_data_set_array(data_set)
        current_page = self.require_numeric_page()

        if self.page_until == PageUntilCondition.NO_DATA_LEFT:
            length = self.get_size_of_data_array(data_set, data)
            if length == 0 or length < self.limit_value:
                return None
            return str(current_page + 1)

        if self.page_until == PageUntilCondition.REACH_TOTAL_COUNT:
            total_expected = self.read_total_expected(data, headers)
            if total_expected is None:
                return None
            # A zero-based first page has already collected one full page
            pages_collected = current_page + (1 if self.page_starting_value == 0 else 0)
            total_collected = self.limit_value * pages_collected
            if total_expected > total_collected:
                return str(current_page + 1)
        return None


class OffsetAndLimitPaginator(Paginator):
    """
    REST offset-and-limit pagination begins paging at an initial offset
    and increments it by the number of elements in a full page
    """

    scheme_type = PagingType.OFFSET_AND_LIMIT
    supported_conditions = (PageUntilCondition.NO_DATA_LEFT.value,
                            PageUntilCondition.REACH_TOTAL_COUNT.value)

    def __init__(self, paging_scheme: Dict[str, Any],
                 evaluator: Optional[ExpressionEvaluator] = None):
        super().__init__(paging_scheme, evaluator)
        self.raise_if_invalid(self.validate_paging_scheme())

        self.offset_parameter: str = self.request['offsetParameter']
        self.offset_starting_value = int(_to_number(self.request['offsetStartingValue']))
        self.limit_parameter: str = self.request['limitParameter']
        self.limit_value = _to_positive_int(self.request['limitValue'])

    def validate_paging_scheme(self) -> Optional[str]:
        scheme_type = self.scheme_type.value
        if (_to_number(self.request.get('offsetStartingValue')) is None
                or not self.request.get('offsetParameter')
                or not self.request.get('limitParameter')):
            return f"Request parameters must be defined for {scheme_type} schemes."
        limit_value = self.request.get('limitValue')
        if _to_positive_int(limit_value) is None:
            return f"Limit value {limit_value} must be a positive integer for {scheme_type} schemes."
        if self.page_until == PageUntilCondition.REACH_TOTAL_COUNT and not self.response.get('totalCount'):
            return f"totalCount must be defined for paging condition: {self.page_until}."
        return None

    def paginate_query_string(self, relative_url: str, base_url: Optional[str] = None,
                              page: Optional[str] = None) -> str:
        offset = self.numeric_page(page, self.offset_starting_value)
        self.page_state = AtPage(offset)
        delimiter = calc_url_delimiter(relative_url, base_url)
        return (f"{relative_url}{delimiter}{self.offset_parameter}={offset}"
                f"&{self.limit_parameter}={self.limit_value}")

    def paginate_message_body(self, message_body: Optional[Any],
                              page: Optional[str] = None) -> Dict[str, Any]:
        offset = self.numeric_page(page, self.offset_starting_value)
        self.page_state = AtPage(offset)
        self.ensure_message_body(message_body)
        body = copy.deepcopy(message_body)
        set_path(body, self.offset_parameter, offset)
        set_path(body, self.limit_parameter, self.limit_value)
        return body

    def get_next_page(self, data_set: DataSet, data: Any,
                      headers: Optional[Headers] = None,
                      base_url: Optional[str] = None) -> Optional[str]:
        self.ensure_data_set_array(data_set)
        offset = self.require_numeric_page()
        next_offset = offset + self.limit_value

        if self.page_until == PageUntilCondition.NO_DATA_LEFT:
            length = self.get_size_of_data_array(data_set, data)
            if length == 0 or length < self.limit_value:
                return None
            return str(next_offset)

        if self.page_until == PageUntilCondition.REACH_TOTAL_COUNT:
            total_expected = self.read_total_expected(data, headers)
            # A total of zero means there is nothing further to collect
            if total_expected is None or next_offset >= total_expected:
                return None
            return str(next_offset)
        return None


class GraphQLConnectionsPaginator(Paginator):
    """
    GraphQL connections pagination follows cursors
    until pageInfo.hasNextPage is false
    """

    scheme_type = PagingType.GRAPHQL_CONNECTIONS
    supported_conditions = (PageUntilCondition.NO_NEXT_PAGE.value,)

    def __init__(self, paging_scheme: Dict[str, Any], method: Optional[str] = None,
                 evaluator: Optional[ExpressionEvaluator] = None):
        super().__init__(paging_scheme, evaluator)
        self.raise_if_invalid(self.validate_paging_scheme(method))

        self.limit_parameter: str = self.request['limitParameter']
        self.limit_value = _to_positive_int(self.request['limitValue'])

    def validate_paging_scheme(self, method: Optional[str]) -> Optional[str]:
        scheme_type = self.scheme_type.value
        if not self.request.get('limitParameter'):
            return f"Request parameters must be defined for {scheme_type} schemes."
        limit_value = self.request.get('limitValue')
        if _to_positive_int(limit_value) is None:
            return f"Limit value {limit_value} must be a positive integer for {scheme_type} schemes."
        if method != DataSetMethod.POST:
            return f"GraphQL pagination scheme {scheme_type} supports POST method only."
        if self.page_until == PageUntilCondition.NO_NEXT_PAGE and not self.response.get('pageInfo'):
            return f"pageInfo must be defined for paging condition: {self.page_until}."
        return None

    def paginate_query_string(self, relative_url: str, base_url: Optional[str] = None,
                              page: Optional[str] = None) -> str:
        self.page_state = AtPage(page)
        return relative_url

    def paginate_message_body(self, message_body: Optional[Any],
                              page: Optional[str] = None) -> Dict[str, Any]:
        self.page_state = AtPage(page)
        if not isinstance(message_body, dict) or not message_body.get('query'):
            raise PaginatorError(
                f"Invalid GraphQL request body for {self.scheme_type.value} scheme: "
                f"{json.dumps(message_body, default=str)}"
            )
        return {
            **message_body,
            'variables': {
                **(message_body.get('variables') or {}),
                self.limit_parameter: self.limit_value,
                'after': page
            }
        }

    def get_next_page(self, data_set: DataSet, data: Any,
                      headers: Optional[Headers] = None,
                      base_url: Optional[str] = None) -> Optional[str]:
        self.ensure_data_set_array(data_set)
        if self.page_until != PageUntilCondition.NO_NEXT_PAGE:
            return None
        page_info = self.get_property_value(data, self.response['pageInfo'])
        if not isinstance(page_info, dict):
            return None
        if page_info.get('hasNextPage') is True and page_info.get('endCursor'):
            return str(page_info['endCursor'])
        return None


class PaginationFactory:
    """Factory for creating the paginator matching a data set's paging scheme"""

    PAGINATORS = {
        PagingType.NEXT_TOKEN.value: NextTokenPaginator,
        PagingType.PAGE_BASED.value: PageBasedPaginator,
        PagingType.OFFSET_AND_LIMIT.value: OffsetAndLimitPaginator,
        PagingType.GRAPHQL_CONNECTIONS.value: GraphQLConnectionsPaginator
    }

    @classmethod
    def create_paginator(cls, paging_scheme: Dict[str, Any], method: Optional[str] = None,
                         evaluator: Optional[ExpressionEvaluator] = None) -> Paginator:
        """
        Create a paginator for a paging scheme

        Args:
            paging_scheme: JSON definition of pagination behavior
            method: HTTP method of the data set; GraphQL schemes require POST
            evaluator: Expression evaluator for response paths

        Returns:
            Validated paginator instance

        Raises:
            PaginatorError: If the scheme type is unknown or the scheme is invalid
        """
        scheme_type = paging_scheme.get('type') if isinstance(paging_scheme, dict) else None
        paginator_class = cls.PAGINATORS.get(scheme_type)
        if paginator_class is None:
            raise PaginatorError(f"Invalid paging scheme: {scheme_type}")
        if paginator_class is GraphQLConnectionsPaginator:
            return paginator_class(paging_scheme, method, evaluator)
        return paginator_class(paging_scheme, evaluator)


create_paginator = PaginationFactory.create_paginator
