"""
RestDataSource module for retrieving and shaping declared data sets

A data set declaration names a URL, an optional paging scheme and a series
of shaping stages. `get_data` runs them in a fixed order:

    tokens -> fetch (paged) -> property -> joins -> lookups -> filter
    -> shape check -> transform -> sort

Pending results from any fetch are returned as-is and stop the pipeline.
"""

import functools
import logging
import time
from typing import Dict, Any, List, Optional, Tuple
from urllib.parse import quote, urlencode, urljoin

from .data_source_base import DataSourceBase
from .exceptions import ConfigurationError, ExternalAPIError
from .expressions import CompiledExpression, ExpressionEvaluator, JsonataEvaluator
from .http_client import HTTPClient
from .models import (
    CompleteResult, DataSet, DataSetMethod, DataSetResult, DataSourceConfig,
    METHODS_WITH_BODY, PagingLevel, PagingState, is_complete
)
from .pagination_strategy import PaginationFactory
from .service_data_iterator import ServiceDataIterator
from .tokens import TokenContext, format_token_value, resolve_tokens
from .value_comparator import compare_values

LOOKUP_DEFAULT_VALUE = '__default__'


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality that does not treat booleans as the integers 0 and 1"""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


class RestDataSource(DataSourceBase):
    """
    Data source that retrieves declared data sets from a REST API

    Connector-specific subclasses may override `get_data_from_url` (to
    return a PendingResult when the service asks to back off),
    `validate_response` and `generate_request_body`.
    """

    def __init__(self, config: DataSourceConfig, messages: Optional[Dict[str, str]] = None,
                 headers: Optional[Dict[str, str]] = None,
                 http_client: Optional[HTTPClient] = None,
                 evaluator: Optional[ExpressionEvaluator] = None):
        """
        Initialize the data source

        Args:
            config: Data source declaration; copied so data sets and value
                lookups can be added later without touching the caller's copy
            messages: Static messages available to tokens as `messages.*`
            headers: Headers sent with every request
            http_client: Transport used for requests
            evaluator: Expression evaluator for property, join, filter and
                transform expressions
        """
        self.config = DataSourceConfig(
            base_url=config.base_url,
            data_sets=dict(config.data_sets),
            value_lookups=dict(config.value_lookups)
        )
        self.messages = dict(messages or {})
        self.headers = dict(headers or {})
        self.http_client = http_client or HTTPClient(self.headers, config.base_url)
        self.evaluator = evaluator or JsonataEvaluator()
        self.paging_state = PagingState.NONE
        self.logger = logging.getLogger(__name__)

    def set_paging_state(self, paging_state: PagingState) -> None:
        if self.paging_state is not PagingState.NONE:
            raise RuntimeError('Paging state can only be set once.')
        self.paging_state = paging_state

    def set_base_url_from_host(self, host_url: Optional[str]) -> None:
        if not host_url:
            return
        self.set_base_url(host_url)

    def set_base_url(self, base_url: str) -> None:
        self.config.base_url = base_url
        self.http_client.set_base_url(base_url)

    def set_retry_count(self, retry_count: int) -> None:
        """Explicitly set the retry count of the HTTP client"""
        self.http_client.set_retry_count(retry_count)

    def get_config(self) -> DataSourceConfig:
        return self.config

    def overwrite_base_url_and_headers(self, base_url: str, headers: Dict[str, str]) -> None:
        self.config.base_url = base_url
        self.headers = dict(headers)
        self.http_client.set_base_url(base_url)
        self.http_client.set_headers(self.headers)

    def add_data_set(self, name: str, data_set: Any) -> None:
        """
        Add a data set to the configured collection

        Args:
            name: Unique data set name
            data_set: DataSet instance or its JSON declaration

        Raises:
            ConfigurationError: If a data set with that name already exists
        """
        if name in self.config.data_sets:
            raise ConfigurationError('A data set with that name already exists.')
        if not isinstance(data_set, DataSet):
            data_set = DataSet.from_dict(name, data_set)
        self.config.data_sets[name] = data_set

    def add_value_lookup(self, name: str, value_lookup: Dict[str, Any]) -> None:
        if name in self.config.value_lookups:
            raise ConfigurationError('A value lookup with that name already exists.')
        self.config.value_lookups[name] = value_lookup

    def get_data_set(self, data_set_name: str) -> DataSet:
        data_set = self.config.data_sets.get(data_set_name)
        if data_set is None:
            raise ConfigurationError(f"Invalid data set name: {data_set_name}")
        return data_set

    def get_unprocessed_response(self, data_set_name: str,
                                 params: Optional[Dict[str, Any]] = None):
        """Resolve the data set URL and return the raw HTTP response"""
        data_set = self.get_data_set(data_set_name)
        resolved_url, _ = self.resolve_url_tokens(params, data_set)

        self.logger.info(f"Retrieving raw response from URL '{resolved_url}'")
        return self.http_client.get_unprocessed_response(
            resolved_url, is_absolute_url=data_set.is_absolute_url
        )

    def generate_iterator_plan(self, proof_type: str, iterator_definitions: List[Dict[str, Any]],
                               data_set_params: Dict[str, Any], iterator_params: Dict[str, Any],
                               metadata: Optional[Dict[str, Any]] = None) -> DataSetResult:
        iterator = ServiceDataIterator(self, iterator_definitions, proof_type)
        return iterator.generate_iterator_plan(data_set_params, iterator_params, metadata)

    def iterate_data_flow(self, proof_type: str, data_set_name: str,
                          iterator_definitions: List[Dict[str, Any]],
                          iterable_slice: List[Dict[str, Any]],
                          params: Optional[Dict[str, Any]] = None, page: Optional[str] = None,
                          metadata: Optional[Dict[str, Any]] = None,
                          organization: Optional[Dict[str, Any]] = None) -> DataSetResult:
        iterator = ServiceDataIterator(self, iterator_definitions, proof_type)
        return iterator.iterate_data_flow(
            data_set_name, iterable_slice, params, page, metadata, organization
        )

    def get_data(self, data_set_name: str, params: Optional[Dict[str, Any]] = None,
                 page: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None,
                 organization: Optional[Dict[str, Any]] = None) -> DataSetResult:
        """
        Retrieve data for a named data set

        Args:
            data_set_name: Name of the data set to retrieve
            params: Parameter values available to tokens
            page: Page value returned by a previous call; None for the first page
            metadata: Metadata from a previous sync run if requeued
            organization: Localization data used for formatting

        Returns:
            CompleteResult with the shaped data, or the PendingResult of
            whichever fetch did not complete

        Raises:
            ConfigurationError: If the data set is unknown or its data does
                not match the declaration
            ExternalAPIError: If the HTTP request fails
        """
        self.logger.debug(f"Retrieving service data for data set '{data_set_name}'")
        data_set = self.get_data_set(data_set_name)

        relative_url, token_context = self.resolve_url_tokens(params, data_set)

        request_body = None
        if data_set.method in METHODS_WITH_BODY:
            request_body = self.generate_request_body(
                data_set_name, token_context, data_set.body, params
            )

        if data_set.paging_scheme:
            response = self.page_data_from_url(
                data_set_name, data_set, relative_url, params, page, metadata,
                data_set.method, request_body, data_set.headers, organization
            )
        else:
            response = self.get_data_from_url(
                data_set_name, data_set, relative_url, params, page, metadata,
                data_set.method, request_body, data_set.headers, organization
            )

        if not is_complete(response):
            return response

        return self.process_response(
            data_set_name, data_set, token_context, response, params, metadata,
            property_extracted=self.is_connector_level_paging(data_set)
        )

    def resolve_url_tokens(self, params: Optional[Dict[str, Any]],
                           data_set: DataSet) -> Tuple[str, TokenContext]:
        """
        Resolve tokens in the data set URL and append its query string

        Query values that resolve to nothing are left out.
        """
        token_context = self.init_token_context(params)
        resolved_url = resolve_tokens(data_set.url, token_context)

        query = {}
        for key, value in data_set.query.items():
            resolved = resolve_tokens(value, token_context)
            if resolved is None or resolved == '':
                continue
            query[key] = format_token_value(resolved)

        if query:
            resolved_url = f"{resolved_url}?{urlencode(sorted(query.items()), quote_via=quote)}"

        return resolved_url, token_context

    def process_response(self, data_set_name: str, data_set: DataSet,
                         token_context: TokenContext, response: CompleteResult,
                         params: Optional[Dict[str, Any]] = None,
                         metadata: Optional[Dict[str, Any]] = None,
                         property_extracted: bool = False) -> DataSetResult:
        """
        Apply the shaping stages to a complete response

        Args:
            property_extracted: True when connector level paging has
                already selected the `property` value of every page
        """
        data = response.data
        if data_set.property_path and not property_extracted:
            self.logger.info(f"Extracting data from '{data_set.property_path}' property.")
            data = self.get_property_value(data, data_set.property_path)

        if isinstance(data, list):
            self.logger.info(f"Received array of length {len(data)} from REST API.")
        else:
            self.logger.info('Received object from REST API.')

        join_result = self.apply_joins(data_set_name, data_set, token_context, data)
        if not is_complete(join_result):
            return join_result
        data = join_result.data

        lookup_result = self.apply_lookups(data_set_name, data_set, token_context, data, metadata)
        if not is_complete(lookup_result):
            return lookup_result
        data = lookup_result.data

        data = self.apply_filter(data_set_name, data_set, token_context, data, params)
        data = self.reconcile_result_shape(data_set_name, data_set, data)
        data = self.apply_transforms(data_set_name, data_set, data, params)

        if isinstance(data, list):
            data = self.apply_sort(data_set_name, data_set, data, params)

        self.logger.debug(f"Data retrieval and processing for '{data_set_name}' complete")

        return CompleteResult(
            data=data,
            source=response.source,
            headers=response.headers,
            next_page=response.next_page,
            context=response.context,
            error_info=response.error_info
        )

    def get_data_from_url(self, data_set_name: str, data_set: DataSet, relative_url: str,
                          params: Optional[Dict[str, Any]] = None, page: Optional[str] = None,
                          metadata: Optional[Dict[str, Any]] = None,
                          method: Optional[DataSetMethod] = None, request_body: Any = None,
                          request_headers: Optional[Dict[str, str]] = None,
                          organization: Optional[Dict[str, Any]] = None) -> DataSetResult:
        """
        Retrieve JSON from a service-relative URL

        Subclasses may override this to return a PendingResult.

        Raises:
            ConfigurationError: If the method is not supported
        """
        self.logger.info(f"Retrieving data from URL '{relative_url}'")

        if method == DataSetMethod.PATCH:
            response = self.http_client.patch_json(relative_url, request_body, request_headers)
        elif method == DataSetMethod.POST:
            response = self.http_client.post_json(relative_url, request_body, request_headers)
        elif method == DataSetMethod.PUT:
            response = self.http_client.put_json(relative_url, request_body, request_headers)
        elif method in (DataSetMethod.GET, None):
            response = self.http_client.get_json(relative_url, request_headers)
        else:
            raise ConfigurationError(f"RestDataSource does not support {method} requests")

        self.validate_response(data_set_name, response.json, response.source, response.headers)

        return CompleteResult(data=response.json, source=response.source, headers=response.headers)

    def page_data_from_url(self, data_set_name: str, data_set: DataSet, relative_url: str,
                           params: Optional[Dict[str, Any]] = None, page: Optional[str] = None,
                           metadata: Optional[Dict[str, Any]] = None,
                           method: Optional[DataSetMethod] = None, request_body: Any = None,
                           request_headers: Optional[Dict[str, str]] = None,
                           organization: Optional[Dict[str, Any]] = None) -> DataSetResult:
        """
        Retrieve paginated JSON from a service-relative URL

        Job level paging (the default) fetches one page and reports the next
        page value for the caller to resume from. Connector level paging
        fetches every page and concatenates the `property` value of each.
        """
        base_url = self.config.base_url
        paginator = PaginationFactory.create_paginator(
            data_set.paging_scheme, method, self.evaluator
        )
        source = urljoin(base_url, relative_url) if base_url else relative_url

        if self.is_connector_level_paging(data_set):
            results: List[Any] = []
            connector_page: Optional[str] = None
            while True:
                paged = paginator.paginate_request(
                    relative_url, base_url, request_body, method, connector_page
                )
                response = self.get_data_from_url(
                    data_set_name, data_set, paged.paged_relative_url, params, page,
                    metadata, method, paged.paged_message_body, request_headers, organization
                )
                if not is_complete(response):
                    return response

                page_data = response.data
                if data_set.property_path:
                    page_data = self.get_property_value(page_data, data_set.property_path)
                if isinstance(page_data, list):
                    results.extend(page_data)
                elif page_data is not None:
                    results.append(page_data)

                connector_page = paginator.get_next_page(
                    data_set, response.data, response.headers, base_url
                )
                self.logger.debug(f"Next page for '{data_set_name}': {connector_page}")
                if connector_page is None:
                    break

            return CompleteResult(
                data=results,
                source=source,
                headers=response.headers,
                context=response.context,
                error_info=response.error_info
            )

        paged = paginator.paginate_request(relative_url, base_url, request_body, method, page)
        response = self.get_data_from_url(
            data_set_name, data_set, paged.paged_relative_url, params, page,
            metadata, method, paged.paged_message_body, request_headers, organization
        )
        if not is_complete(response):
            return response

        next_page = paginator.get_next_page(data_set, response.data, response.headers, base_url)
        self.logger.debug(f"Next page for '{data_set_name}': {next_page}")

        return CompleteResult(
            data=response.data,
            source=source,
            headers=response.headers,
            next_page=next_page,
            context=response.context,
            error_info=response.error_info
        )

    def apply_joins(self, data_set_name: str, data_set: DataSet,
                    token_context: TokenContext, data: Any) -> DataSetResult:
        """
        Inner join the data with other data sets

        Each row is merged with every matching row of the joined data set,
        stored under the join alias. Rows without a match are dropped.
        """
        joins = data_set.joins
        if not joins:
            return CompleteResult(data=data)

        self.logger.info(f"Applying {len(joins)} join(s).")

        join_data = data if isinstance(data, list) else [data]
        for join in joins:
            response = self.get_data(join['dataSet'], join.get('dataSetParams'))
            if not is_complete(response):
                return response

            rhs = response.data
            if not isinstance(rhs, list):
                raise ConfigurationError('Joined data sets must be array types.')

            predicate = [
                (self.evaluator.compile(condition['leftProperty']),
                 self.evaluator.compile(condition['rightProperty']))
                for condition in join.get('on', [])
            ]

            results = []
            for left in join_data:
                for right in rhs:
                    if self.is_predicate_match(left, right, predicate):
                        results.append({**left, join['alias']: right})

            join_data = results

        return CompleteResult(data=join_data)

    def apply_lookups(self, data_set_name: str, data_set: DataSet,
                      token_context: TokenContext, data: Any,
                      metadata: Optional[Dict[str, Any]] = None) -> DataSetResult:
        """
        Fetch a related data set for every row and store it under the lookup alias

        Lookup parameters may reference the current row as `{{source.*}}`.
        Lookups are never paged.
        """
        lookups = data_set.lookups
        if not lookups:
            return CompleteResult(data=data)

        self.logger.info(f"Applying {len(lookups)} lookup(s).")

        rows = data if isinstance(data, list) else [data]
        for lookup in lookups:
            delay_seconds = self.get_lookup_delay(data_set_name, lookup)

            for row in rows:
                if not isinstance(row, dict):
                    self.logger.warning(
                        f"Skipping invalid data object in lookup of type: {type(row).__name__}"
                    )
                    continue

                row_context = {**token_context, 'source': row}
                lookup_params = {
                    key: resolve_tokens(value, row_context) if isinstance(value, str) else value
                    for key, value in (lookup.get('dataSetParams') or {}).items()
                }

                if delay_seconds:
                    time.sleep(delay_seconds)

                try:
                    response = self.get_data(lookup['dataSet'], lookup_params, None, metadata)
                except (ConfigurationError, ExternalAPIError) as e:
                    if lookup.get('continueOnError') is True:
                        self.logger.warning(
                            f"Continuing upon error performing lookup for data set: "
                            f"{lookup['dataSet']}: {e}"
                        )
                        continue
                    raise

                if not is_complete(response):
                    return response
                row[lookup['alias']] = response.data

        return CompleteResult(data=rows if isinstance(data, list) else rows[0])

    def get_lookup_delay(self, data_set_name: str, lookup: Dict[str, Any]) -> float:
        delay_seconds = lookup.get('delaySeconds')
        if not delay_seconds:
            return 0.0
        if (isinstance(delay_seconds, bool) or not isinstance(delay_seconds, (int, float))
                or not 0 <= delay_seconds <= 1):
            raise ConfigurationError(
                f"Invalid delay seconds number: {delay_seconds} for data set: "
                f"{data_set_name}.  Must be less than or equal to 1."
            )
        return float(delay_seconds)

    def apply_filter(self, data_set_name: str, data_set: DataSet,
                     token_context: TokenContext, data: Any,
                     params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Keep the rows for which every filter expression equals its value

        An object result is narrowed to the single matching row, or None
        when nothing matched.
        """
        if data_set.filter is None:
            return data

        self.logger.info('Filtering data set.')

        if not isinstance(data, list):
            raise ConfigurationError(
                'Filter specified on data set but retrieved data is not an array.'
            )

        criteria = []
        for criterion in data_set.filter:
            value = criterion.get('value')
            if isinstance(value, str) and value:
                value = resolve_tokens(value, token_context)
            criteria.append((self.evaluator.compile(criterion['property']), value))

        data = [
            item for item in data
            if all(_strict_equals(expression.evaluate(item), value)
                   for expression, value in criteria)
        ]

        if not data_set.is_array_result:
            if len(data) == 0:
                return None
            if len(data) == 1:
                return data[0]
            raise ConfigurationError(
                f"Object result specified for data set but filtered result had {len(data)} items."
            )

        return data

    def reconcile_result_shape(self, data_set_name: str, data_set: DataSet, data: Any) -> Any:
        """
        Make the data match the declared result type

        A single element array becomes an object, and None becomes an empty
        array. Any other mismatch is an error.
        """
        is_data_array = isinstance(data, list)
        if data_set.is_array_result == is_data_array and data is not None:
            return data

        if is_data_array and len(data) == 1:
            return data[0]
        if data_set.is_array_result and data is None:
            return []

        where = f"'.{data_set.property_path}' property" if data_set.property_path else 'body'
        raise ConfigurationError(
            f"Data returned from {data_set_name} response {where} does not match "
            f"expected {data_set.result} result."
        )

    def apply_transforms(self, data_set_name: str, data_set: DataSet, data: Any,
                         params: Optional[Dict[str, Any]] = None) -> Any:
        transform = data_set.transform
        if not transform:
            return data

        self.logger.info('Transforming data set.')

        if isinstance(data, list):
            return [self.transform_object(transform, item, params) for item in data]
        return self.transform_object(transform, data, params)

    def apply_sort(self, data_set_name: str, data_set: DataSet, data: List[Any],
                   params: Optional[Dict[str, Any]] = None) -> List[Any]:
        """Stable multi-key sort; later keys break ties of earlier ones"""
        sort = data_set.sort
        if not sort:
            return data

        self.logger.info('Sorting data set.')

        def compare_rows(a: Any, b: Any) -> int:
            for clause in sort:
                direction = -1 if clause.get('direction') == 'descending' else 1
                prop = clause['property']
                result = compare_values(
                    a.get(prop) if isinstance(a, dict) else None,
                    b.get(prop) if isinstance(b, dict) else None
                )
                if result:
                    return result * direction
            return 0

        data.sort(key=functools.cmp_to_key(compare_rows))
        return data

    def transform_object(self, transform: Dict[str, Any], item: Any,
                         params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Build a new object whose values are the transform expressions
        evaluated against `item`

        Expressions may be given as arrays of strings, which are joined.
        `$vlookup(name, value)` maps a value through a named value lookup.
        """
        result = {}
        token_context = self.init_token_context(params)

        def mlookup(lookup_name: str, value: Any) -> Any:
            self.logger.warning('$mlookup is deprecated.  Please use $vlookup.')
            return self.value_lookup(lookup_name, value)

        for key, expression_source in transform.items():
            if isinstance(expression_source, list):
                expression_source = ''.join(expression_source)
            expression = self.evaluator.compile(expression_source)
            expression.register_function('vlookup', self.value_lookup)
            expression.register_function('mlookup', mlookup)

            value = expression.evaluate(item)
            if isinstance(value, str):
                # Service data may contain token-like text, which is left as is
                value = resolve_tokens(value, token_context, suppress_errors=True)
            result[key] = value

        return result

    def value_lookup(self, lookup_name: str, value: Any) -> Any:
        """
        Map a value through a named value lookup

        Falls back to the `__default__` entry, or to the value itself when
        the lookup has no default.
        """
        value_lookups = self.config.value_lookups
        if not value_lookups:
            raise ConfigurationError(
                f"Invalid value lookup: {lookup_name}.  No value lookups defined."
            )
        lookup = value_lookups.get(lookup_name)
        if lookup is None:
            raise ConfigurationError(f"Unable to find data set lookup: {lookup_name}")

        if value is None:
            if LOOKUP_DEFAULT_VALUE not in lookup:
                raise ConfigurationError(
                    f"Invalid lookup: {lookup_name}.  Default value not defined."
                )
            return lookup[LOOKUP_DEFAULT_VALUE]

        if not isinstance(value, (str, int, float, bool)):
            raise ConfigurationError(f"Invalid data set lookup value: {lookup_name}")

        lookup_value = format_token_value(value)
        if lookup_value in lookup:
            return lookup[lookup_value]
        if LOOKUP_DEFAULT_VALUE in lookup:
            return lookup[LOOKUP_DEFAULT_VALUE]
        return value

    def init_token_context(self, params: Optional[Dict[str, Any]] = None) -> TokenContext:
        return {**(params or {}), 'messages': self.messages}

    def get_property_value(self, data: Any, property_path: str) -> Any:
        return self.evaluator.compile(property_path).evaluate(data)

    def is_predicate_match(self, left: Any, right: Any,
                           predicate: List[Tuple[CompiledExpression, CompiledExpression]]) -> bool:
        for left_expression, right_expression in predicate:
            if not _strict_equals(left_expression.evaluate(left),
                                  right_expression.evaluate(right)):
                return False
        return True

    def generate_request_body(self, data_set_name: str, token_context: TokenContext,
                              body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        """Resolve tokens at every level of a POST, PATCH or PUT body"""
        if not body:
            return body
        return resolve_tokens(body, token_context)

    def validate_response(self, data_set_name: str, data: Any, source: str,
                          headers: Dict[str, List[str]]) -> None:
        """
        Validate the response of the external service

        Subclasses may raise when the model is unexpected or an error is
        detected. No validation is applied by default.
        """
        pass

    def is_connector_level_paging(self, data_set: DataSet) -> bool:
        if not data_set.paging_scheme:
            return False
        if data_set.paging_scheme.get('level') == PagingLevel.CONNECTOR.value:
            return True
        return self.paging_state in (PagingState.ITERATION_PLAN, PagingState.BATCHED_ITERATION)

    def post_data_object(self, data_set_name: str,
                         params: Optional[Dict[str, Any]] = None) -> CompleteResult:
        """Alias for get_data_object that only permits POST data sets"""
        self.validate_request_method(data_set_name, DataSetMethod.POST)
        return self.get_data_object(data_set_name, params)

    def patch_data_object(self, data_set_name: str,
                          params: Optional[Dict[str, Any]] = None) -> CompleteResult:
        """Alias for get_data_object that only permits PATCH data sets"""
        self.validate_request_method(data_set_name, DataSetMethod.PATCH)
        return self.get_data_object(data_set_name, params)

    def put_data_object(self, data_set_name: str,
                        params: Optional[Dict[str, Any]] = None) -> CompleteResult:
        """Alias for get_data_object that only permits PUT data sets"""
        self.validate_request_method(data_set_name, DataSetMethod.PUT)
        return self.get_data_object(data_set_name, params)

    def validate_request_method(self, data_set_name: str, method: DataSetMethod) -> None:
        data_set = self.get_data_set(data_set_name)
        if data_set.method != method:
            raise ConfigurationError(
                f"Called {method.value.lower()}_data_object with a data set that does "
                f"not use {method.value} method"
            )
