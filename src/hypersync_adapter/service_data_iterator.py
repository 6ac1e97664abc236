"""
ServiceDataIterator module for iterating a data set over a dynamic collection

An iteration plan is an array of single-key objects ("iterands"). Each
iterand drives one `get_data` call with its value merged into the params.
"""

import logging
from typing import TYPE_CHECKING, Dict, Any, Callable, List, Mapping, Optional

from .exceptions import ConfigurationError
from .models import CompleteResult, DataSetResult, IteratorSource, PagingState, is_complete

if TYPE_CHECKING:
    from .rest_data_source import RestDataSource

IterableObject = Dict[str, Any]
CriteriaTransformer = Callable[[Any, str], List[IterableObject]]

MAX_ALLOWABLE_PROPERTIES = 1
MAX_ITERABLE_ARRAY_SIZE = 10000
MAX_VALIDATION_ITERATIONS = 3  # Elements validated during plan generation


class IteratorError(ConfigurationError):
    """Raised when an iterator definition or iterable array is invalid"""
    pass


def csv_to_iterable(data: Any, iterand_key: str) -> List[IterableObject]:
    """Split a comma separated string into one iterand per trimmed value"""
    if not isinstance(data, str):
        raise IteratorError('ServiceDataIterator: CSV criteria data must be a string')
    return [{iterand_key: item.strip()} for item in data.split(',')]


DEFAULT_CRITERIA_TRANSFORMERS: Dict[str, CriteriaTransformer] = {
    'csvToIterable': csv_to_iterable
}


class ServiceDataIterator:
    """
    Generates iteration plans and drives the iterative data flow

    Only the layer 1 (principal) iterator definition is used.
    """

    def __init__(self, data_source: 'RestDataSource',
                 iterator_definitions: List[Dict[str, Any]], proof_type: str,
                 criteria_transformers: Optional[Mapping[str, CriteriaTransformer]] = None):
        """
        Initialize the iterator

        Args:
            data_source: RestDataSource the data flow runs against
            iterator_definitions: Iterator layer definitions of the proof type
            proof_type: Proof type being synchronized
            criteria_transformers: Named transformers available to criteria
                sourced iterators; defaults to DEFAULT_CRITERIA_TRANSFORMERS

        Raises:
            IteratorError: If the principal iterator definition is invalid
        """
        self.criteria_transformers = dict(
            DEFAULT_CRITERIA_TRANSFORMERS if criteria_transformers is None
            else criteria_transformers
        )
        principal_iterator = self.extract_iterator_layer(iterator_definitions, 1)
        error = self.validate_iterator(principal_iterator)
        if error:
            raise IteratorError(f"Iterator: {error}")
        if not callable(getattr(data_source, 'set_paging_state', None)):
            raise IteratorError(
                'ServiceDataIterator: Data source must support paging state'
            )

        self.data_source = data_source
        self.proof_type = proof_type
        self.principal_iterator = principal_iterator
        self.principal_array_size = principal_iterator.get('subArraySize') or 1
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def extract_iterator_layer(iterator_definitions: Optional[List[Dict[str, Any]]],
                               layer: int) -> Dict[str, Any]:
        if not iterator_definitions:
            raise IteratorError('ServiceDataIterator: dataSetIterator is empty or undefined.')

        for definition in iterator_definitions:
            if definition.get('layer') == layer:
                return definition
        raise IteratorError(f"ServiceDataIterator: No matching iterator found for layer: {layer}")

    @staticmethod
    def merge_iterand_with_params(iterand: IterableObject, iterand_key: str,
                                  params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Merge the iterand value into params, replacing a same-named param"""
        return {**(params or {}), iterand_key: iterand.get(iterand_key)}

    def generate_iterator_plan(self, data_set_params: Dict[str, Any],
                               iterator_params: Dict[str, Any],
                               metadata: Optional[Dict[str, Any]] = None) -> DataSetResult:
        """
        Build the iterable array for the principal iterator

        Args:
            data_set_params: Criteria values; source of criteria iterands
            iterator_params: Params for the data set sourcing the iterands
            metadata: Metadata from a previous sync run if requeued

        Returns:
            CompleteResult with data {"iterableArray": [...], "subArraySize": n},
            or the PendingResult of the data set fetch

        Raises:
            IteratorError: If the iterable array is invalid
        """
        self.data_source.set_paging_state(PagingState.ITERATION_PLAN)
        source = self.principal_iterator.get('source')

        if source == IteratorSource.DATA_SET.value:
            response = self.generate_array_from_data_set(iterator_params, metadata)
            if not is_complete(response):
                return response
            iterable_array = response.data
        elif source == IteratorSource.CRITERIA.value:
            iterable_array = self.generate_array_from_criteria(
                data_set_params, self.principal_iterator.get('criteriaTransformer')
            )
        else:
            raise IteratorError('ServiceDataIterator: Unsupported iterator source.')

        error = self.validate_iterable_array(iterable_array)
        if error:
            raise IteratorError(f"ServiceDataIterator: {error}")

        self.logger.info(
            f"Generated iteration plan of {len(iterable_array)} element(s) for {self.proof_type}"
        )
        return CompleteResult(data={
            'iterableArray': iterable_array,
            'subArraySize': self.principal_array_size
        })

    def iterate_data_flow(self, data_set_name: str, iterable_slice: List[IterableObject],
                          params: Optional[Dict[str, Any]] = None, page: Optional[str] = None,
                          metadata: Optional[Dict[str, Any]] = None,
                          organization: Optional[Dict[str, Any]] = None) -> DataSetResult:
        self.data_source.set_paging_state(
            PagingState.SINGLE_ITERATION if self.is_single_iteration()
            else PagingState.BATCHED_ITERATION
        )
        return self.control_iterative_data_flow(
            data_set_name, iterable_slice, params, page, metadata, organization
        )

    def generate_array_from_criteria(self, params: Optional[Dict[str, Any]],
                                     transformer: Optional[str]) -> List[IterableObject]:
        if not params:
            raise IteratorError(
                'ServiceDataIterator: Params are missing.  '
                'Unable to generate iterable array from criteria.'
            )
        criteria_property = self.principal_iterator.get('criteriaProperty')
        source_criteria = params.get(criteria_property)
        if not source_criteria:
            raise IteratorError(
                f"ServiceDataIterator: Missing param value matching criteria "
                f"property '{criteria_property}'"
            )
        if not transformer:
            raise IteratorError(f"ServiceDataIterator: Invalid criteria transformer: {transformer}")

        transform = self.criteria_transformers.get(transformer)
        if not callable(transform):
            raise IteratorError(
                f"ServiceDataIterator: Criteria transformer '{transformer}' does not "
                f"exist or is not a function."
            )
        return transform(source_criteria, self.principal_iterator['iterandKey'])

    def generate_array_from_data_set(self, params: Dict[str, Any],
                                     metadata: Optional[Dict[str, Any]] = None) -> DataSetResult:
        data_set_name = self.principal_iterator['dataSet']
        response = self.data_source.get_data(data_set_name, params, None, metadata)
        if not is_complete(response):
            return response

        if not isinstance(response.data, list):
            raise IteratorError(
                f"ServiceDataIterator: Iterable array of type "
                f"{type(response.data).__name__} must be an array."
            )
        return CompleteResult(data=response.data)

    def control_iterative_data_flow(self, data_set_name: str, iterable_slice: List[IterableObject],
                                    params: Optional[Dict[str, Any]] = None,
                                    page: Optional[str] = None,
                                    metadata: Optional[Dict[str, Any]] = None,
                                    organization: Optional[Dict[str, Any]] = None) -> DataSetResult:
        """
        Call `get_data` once per iterand and concatenate the results

        Any incomplete result is returned immediately.
        """
        accumulator = CompleteResult(data=[], headers={})

        for iteration in iterable_slice:
            merged_params = self.merge_iterand_with_params(
                iteration, self.principal_iterator['iterandKey'], params
            )
            response = self.data_source.get_data(
                data_set_name, merged_params, page, metadata, organization
            )
            if not is_complete(response):
                return response

            if not isinstance(response.data, list):
                raise IteratorError(
                    f"ServiceDataIterator: Expected data to be an array, but received: "
                    f"{type(response.data).__name__}"
                )

            response = self.handle_data_set_iteration(iteration, response)
            if not is_complete(response):
                return response

            self.update_response_fields(response, accumulator)

        return accumulator

    def handle_data_set_iteration(self, iteration: IterableObject,
                                  response: CompleteResult) -> DataSetResult:
        """Per-iteration hook for subclasses"""
        return response

    def update_response_fields(self, response: CompleteResult,
                               accumulator: CompleteResult) -> None:
        if response.data:
            accumulator.data.extend(response.data)
        if response.headers:
            accumulator.headers = response.headers
        if response.source:
            accumulator.source = response.source
        # Page values only make sense when each job handles one iterand
        if response.next_page and self.is_single_iteration():
            accumulator.next_page = response.next_page
        if response.context:
            accumulator.context = response.context

    def validate_iterator(self, iterator: Dict[str, Any]) -> Optional[str]:
        """Return an error message if the iterator definition is invalid"""
        sub_array_size = iterator.get('subArraySize')
        if sub_array_size is not None and (isinstance(sub_array_size, bool)
                                           or not isinstance(sub_array_size, int)
                                           or sub_array_size <= 0):
            return 'Sub-array size must be greater than 0'

        iterand_key = iterator.get('iterandKey')
        if not isinstance(iterand_key, str) or not iterand_key.strip():
            return 'Iterator must specify a non-empty iterandKey property'

        source = iterator.get('source')
        if source == IteratorSource.DATA_SET.value:
            data_set = iterator.get('dataSet')
            if not isinstance(data_set, str) or not data_set.strip():
                return 'Dataset iterator must specify a non-empty dataSet property'

        elif source == IteratorSource.CRITERIA.value:
            criteria_property = iterator.get('criteriaProperty')
            if not isinstance(criteria_property, str) or not criteria_property.strip():
                return 'Criteria iterator must specify a non-empty criteriaProperty property'
            transformer = iterator.get('criteriaTransformer')
            if not isinstance(transformer, str) or not transformer.strip():
                return 'Criteria iterator must specify a non-empty criteriaTransformer property'
            if transformer not in self.criteria_transformers:
                return f"Criteria iterator specifies unknown criteriaTransformer: '{transformer}'"

        else:
            return f"Invalid iterator source: {source}"

        return None

    def validate_iterable_array(self, iterable_array: List[IterableObject]) -> Optional[str]:
        """
        Return an error message if the iterable array is invalid

        Only the first MAX_VALIDATION_ITERATIONS elements are inspected.
        """
        if len(iterable_array) == 0:
            return 'Invalid iterableArray.  Must be a non-empty array'
        if len(iterable_array) > MAX_ITERABLE_ARRAY_SIZE:
            return (f"Invalid iterableArray.  Length exceeds maximum of "
                    f"{MAX_ITERABLE_ARRAY_SIZE}.  Found {len(iterable_array)} elements.")

        for index, element in enumerate(iterable_array[:MAX_VALIDATION_ITERATIONS]):
            error = self.validate_iterable_element(element)
            if error:
                return f"Invalid iterableArray. Element at index {index}: {error}"
        return None

    def validate_iterable_element(self, element: Any) -> Optional[str]:
        if not isinstance(element, dict):
            return 'Must be a JSON object'

        iterand_key = self.principal_iterator['iterandKey']
        if iterand_key not in element:
            return f"Missing iterand key: '{iterand_key}'"
        if len(element) > MAX_ALLOWABLE_PROPERTIES:
            return (f"Only {MAX_ALLOWABLE_PROPERTIES} property is allowed to be present in "
                    f"an iterable element.  Found {len(element)} properties.  "
                    f"Use declarative transforms to reshape data.")
        return None

    def is_single_iteration(self) -> bool:
        return self.principal_array_size == 1
