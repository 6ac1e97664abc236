"""
Test suite for ServiceDataIterator component
Following TDD approach with AAA pattern and descriptive naming
"""

import pytest
from unittest.mock import Mock
from hypersync_adapter.models import CompleteResult, PagingState, PendingResult, is_complete
from hypersync_adapter.service_data_iterator import (
    IteratorError, ServiceDataIterator, csv_to_iterable
)

DATA_SET_ITERATOR = [{'layer': 1, 'source': 'dataSet', 'dataSet': 'projects', 'iterandKey': 'projectId'}]
CRITERIA_ITERATOR = [{'layer': 1, 'source': 'criteria', 'criteriaProperty': 'repos',
                      'criteriaTransformer': 'csvToIterable', 'iterandKey': 'repo'}]


class TestServiceDataIteratorConstruction:
    """Test suite for iterator definition validation"""

    def test_init_with_empty_definitions_raises_iterator_error(self):
        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            ServiceDataIterator(Mock(), [], 'userAccessReview')

        assert "dataSetIterator is empty or undefined" in str(exc_info.value)

    def test_init_with_no_layer_one_raises_iterator_error(self):
        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            ServiceDataIterator(Mock(), [dict(DATA_SET_ITERATOR[0], layer=2)], 'userAccessReview')

        assert "No matching iterator found for layer: 1" in str(exc_info.value)

    def test_init_with_zero_sub_array_size_raises_iterator_error(self):
        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            ServiceDataIterator(Mock(), [dict(DATA_SET_ITERATOR[0], subArraySize=0)], 'userAccessReview')

        assert "Sub-array size must be greater than 0" in str(exc_info.value)

    def test_init_with_non_integer_sub_array_size_raises_iterator_error(self):
        """
        Test that string, float and boolean sizes are rejected as configuration errors
        """
        for sub_array_size in ('2', 1.5, True):
            # Act & Assert
            with pytest.raises(IteratorError) as exc_info:
                ServiceDataIterator(Mock(), [dict(DATA_SET_ITERATOR[0], subArraySize=sub_array_size)],
                                    'userAccessReview')

            assert "Sub-array size must be greater than 0" in str(exc_info.value)

    def test_init_with_blank_iterand_key_raises_iterator_error(self):
        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            ServiceDataIterator(Mock(), [dict(DATA_SET_ITERATOR[0], iterandKey='  ')], 'userAccessReview')

        assert "non-empty iterandKey" in str(exc_info.value)

    def test_init_with_unknown_criteria_transformer_raises_iterator_error(self):
        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            ServiceDataIterator(Mock(), [dict(CRITERIA_ITERATOR[0], criteriaTransformer='jsonToIterable')],
                                'userAccessReview')

        assert "unknown criteriaTransformer: 'jsonToIterable'" in str(exc_info.value)

    def test_init_with_invalid_source_raises_iterator_error(self):
        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            ServiceDataIterator(Mock(), [dict(DATA_SET_ITERATOR[0], source='file')], 'userAccessReview')

        assert "Invalid iterator source: file" in str(exc_info.value)

    def test_init_with_data_source_without_paging_state_raises_iterator_error(self):
        # Arrange
        data_source = Mock(spec=['get_data'])

        # Act & Assert
        with pytest.raises(IteratorError):
            ServiceDataIterator(data_source, DATA_SET_ITERATOR, 'userAccessReview')


class TestServiceDataIteratorPlan:
    """Test suite for iteration plan generation"""

    def test_generate_iterator_plan_with_data_set_source_returns_iterable_array(self):
        """
        Test that a valid data set iterand array is returned with the sub-array size
        """
        # Arrange
        data_source = Mock()
        data_source.get_data.return_value = CompleteResult(data=[{'projectId': 1}, {'projectId': 2}])
        iterator = ServiceDataIterator(data_source, [dict(DATA_SET_ITERATOR[0], subArraySize=5)],
                                       'userAccessReview')

        # Act
        result = iterator.generate_iterator_plan({}, {'org': 'acme'})

        # Assert
        assert result.data == {'iterableArray': [{'projectId': 1}, {'projectId': 2}], 'subArraySize': 5}
        data_source.set_paging_state.assert_called_once_with(PagingState.ITERATION_PLAN)
        data_source.get_data.assert_called_once_with('projects', {'org': 'acme'}, None, None)

    def test_generate_iterator_plan_with_multi_property_element_reports_index(self):
        """
        Test that an element with more than one property is rejected, naming its index
        """
        # Arrange
        data_source = Mock()
        data_source.get_data.return_value = CompleteResult(data=[{'projectId': 1, 'name': 'x'}])
        iterator = ServiceDataIterator(data_source, DATA_SET_ITERATOR, 'userAccessReview')

        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            iterator.generate_iterator_plan({}, {})

        assert "Element at index 0" in str(exc_info.value)
        assert "Found 2 properties" in str(exc_info.value)

    def test_generate_iterator_plan_with_missing_iterand_key_raises_iterator_error(self):
        # Arrange
        data_source = Mock()
        data_source.get_data.return_value = CompleteResult(data=[{'projectId': 1}, {'id': 2}])
        iterator = ServiceDataIterator(data_source, DATA_SET_ITERATOR, 'userAccessReview')

        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            iterator.generate_iterator_plan({}, {})

        assert "Element at index 1: Missing iterand key: 'projectId'" in str(exc_info.value)

    def test_generate_iterator_plan_with_empty_array_raises_iterator_error(self):
        # Arrange
        data_source = Mock()
        data_source.get_data.return_value = CompleteResult(data=[])
        iterator = ServiceDataIterator(data_source, DATA_SET_ITERATOR, 'userAccessReview')

        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            iterator.generate_iterator_plan({}, {})

        assert "Must be a non-empty array" in str(exc_info.value)

    def test_generate_iterator_plan_with_object_data_raises_iterator_error(self):
        # Arrange
        data_source = Mock()
        data_source.get_data.return_value = CompleteResult(data={'projectId': 1})
        iterator = ServiceDataIterator(data_source, DATA_SET_ITERATOR, 'userAccessReview')

        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            iterator.generate_iterator_plan({}, {})

        assert "must be an array" in str(exc_info.value)

    def test_generate_iterator_plan_with_pending_data_set_returns_pending_result(self):
        # Arrange
        pending = PendingResult(delay=60, max_retry=3)
        data_source = Mock()
        data_source.get_data.return_value = pending
        iterator = ServiceDataIterator(data_source, DATA_SET_ITERATOR, 'userAccessReview')

        # Act
        result = iterator.generate_iterator_plan({}, {})

        # Assert
        assert result is pending

    def test_generate_iterator_plan_with_criteria_source_splits_csv(self):
        # Arrange
        data_source = Mock()
        iterator = ServiceDataIterator(data_source, CRITERIA_ITERATOR, 'userAccessReview')

        # Act
        result = iterator.generate_iterator_plan({'repos': 'api, web ,docs'}, {})

        # Assert
        assert result.data['iterableArray'] == [{'repo': 'api'}, {'repo': 'web'}, {'repo': 'docs'}]
        assert result.data['subArraySize'] == 1
        data_source.get_data.assert_not_called()

    def test_generate_iterator_plan_with_missing_criteria_value_raises_iterator_error(self):
        # Arrange
        iterator = ServiceDataIterator(Mock(), CRITERIA_ITERATOR, 'userAccessReview')

        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            iterator.generate_iterator_plan({'other': 'x'}, {})

        assert "criteria property 'repos'" in str(exc_info.value)

    def test_generate_iterator_plan_with_injected_transformer_uses_it(self):
        """
        Test that criteria transformers come from the injected registry
        """
        # Arrange
        definitions = [dict(CRITERIA_ITERATOR[0], criteriaTransformer='linesToIterable')]
        transformers = {
            'linesToIterable': lambda data, key: [{key: line} for line in data.splitlines()]
        }
        iterator = ServiceDataIterator(Mock(), definitions, 'userAccessReview',
                                       criteria_transformers=transformers)

        # Act
        result = iterator.generate_iterator_plan({'repos': 'api\nweb'}, {})

        # Assert
        assert result.data['iterableArray'] == [{'repo': 'api'}, {'repo': 'web'}]


class TestServiceDataIteratorDataFlow:
    """Test suite for the iterative data flow"""

    def test_iterate_data_flow_with_slice_concatenates_results(self):
        """
        Test that each iterand is merged into params and the arrays are concatenated
        """
        # Arrange
        data_source = Mock()
        data_source.get_data.side_effect = [
            CompleteResult(data=[{'user': 'a'}], source='https://x/1', headers={'H': ['1']}, next_page='p2'),
            CompleteResult(data=[{'user': 'b'}, {'user': 'c'}], source='https://x/2', headers={'H': ['2']})
        ]
        iterator = ServiceDataIterator(data_source, [dict(DATA_SET_ITERATOR[0], subArraySize=2)],
                                       'userAccessReview')

        # Act
        result = iterator.iterate_data_flow(
            'members', [{'projectId': 1}, {'projectId': 2}], {'projectId': 0, 'role': 'admin'}
        )

        # Assert
        assert result.data == [{'user': 'a'}, {'user': 'b'}, {'user': 'c'}]
        assert result.source == 'https://x/2'
        assert result.headers == {'H': ['2']}
        assert result.next_page is None
        data_source.set_paging_state.assert_called_once_with(PagingState.BATCHED_ITERATION)
        first_params = data_source.get_data.call_args_list[0][0][1]
        assert first_params == {'projectId': 1, 'role': 'admin'}

    def test_iterate_data_flow_with_single_iteration_keeps_next_page(self):
        # Arrange
        data_source = Mock()
        data_source.get_data.return_value = CompleteResult(data=[{'user': 'a'}], next_page='2')
        iterator = ServiceDataIterator(data_source, DATA_SET_ITERATOR, 'userAccessReview')

        # Act
        result = iterator.iterate_data_flow('members', [{'projectId': 1}], page='1')

        # Assert
        assert result.next_page == '2'
        data_source.set_paging_state.assert_called_once_with(PagingState.SINGLE_ITERATION)
        data_source.get_data.assert_called_once_with('members', {'projectId': 1}, '1', None, None)

    def test_iterate_data_flow_with_pending_response_stops_immediately(self):
        # Arrange
        pending = PendingResult(delay=10, max_retry=2)
        data_source = Mock()
        data_source.get_data.side_effect = [CompleteResult(data=[{'user': 'a'}]), pending]
        iterator = ServiceDataIterator(data_source, [dict(DATA_SET_ITERATOR[0], subArraySize=3)],
                                       'userAccessReview')

        # Act
        result = iterator.iterate_data_flow(
            'members', [{'projectId': 1}, {'projectId': 2}, {'projectId': 3}]
        )

        # Assert
        assert result is pending
        assert not is_complete(result)
        assert data_source.get_data.call_count == 2

    def test_iterate_data_flow_with_object_response_raises_iterator_error(self):
        # Arrange
        data_source = Mock()
        data_source.get_data.return_value = CompleteResult(data={'user': 'a'})
        iterator = ServiceDataIterator(data_source, DATA_SET_ITERATOR, 'userAccessReview')

        # Act & Assert
        with pytest.raises(IteratorError) as exc_info:
            iterator.iterate_data_flow('members', [{'projectId': 1}])

        assert "Expected data to be an array" in str(exc_info.value)


class TestCsvToIterable:
    """Test suite for the csvToIterable criteria transformer"""

    def test_csv_to_iterable_with_string_trims_each_value(self):
        # Act
        result = csv_to_iterable(' a,b , c', 'name')

        # Assert
        assert result == [{'name': 'a'}, {'name': 'b'}, {'name': 'c'}]

    def test_csv_to_iterable_with_non_string_raises_iterator_error(self):
        # Act & Assert
        with pytest.raises(IteratorError):
            csv_to_iterable(['a', 'b'], 'name')


class TestServiceDataIteratorHelpers:
    """Test suite for static helpers"""

    def test_merge_iterand_with_params_with_same_key_replaces_param(self):
        # Act
        result = ServiceDataIterator.merge_iterand_with_params(
            {'projectId': 5}, 'projectId', {'projectId': 1, 'x': 2}
        )

        # Assert
        assert result == {'projectId': 5, 'x': 2}

    def test_extract_iterator_layer_with_layers_returns_matching_layer(self):
        # Arrange
        definitions = [{'layer': 2, 'iterandKey': 'b'}, {'layer': 1, 'iterandKey': 'a'}]

        # Act
        result = ServiceDataIterator.extract_iterator_layer(definitions, 1)

        # Assert
        assert result['iterandKey'] == 'a'
