"""
CriteriaOptionsProvider module for building select options from data sets
"""

import logging
from typing import Dict, Any, List, Optional

from .data_source_base import DataSourceBase
from .exceptions import ConfigurationError
from .models import is_complete
from .tokens import TokenContext, resolve_tokens
from .value_comparator import sort_key


class CriteriaOptionsProvider:
    """Builds the `{value, label}` options of a criteria field"""

    def __init__(self, data_source: DataSourceBase):
        self.data_source = data_source
        self.logger = logging.getLogger(__name__)

    def get_criteria_field_options(self, field_config: Dict[str, Any],
                                   criteria: Dict[str, Any],
                                   token_context: Optional[TokenContext] = None) -> List[Dict[str, Any]]:
        """
        Build the options of a criteria field

        Options from the field's data set (every page of it) are sorted by
        label. Declared fixed values are placed first.

        Args:
            field_config: Criteria field declaration with `dataSet`,
                `dataSetParams`, `valueProperty`, `labelProperty` and
                `fixedValues` keys
            criteria: Criteria values selected so far, available to
                `dataSetParams` tokens as `criteria.*`
            token_context: Context used to resolve fixed values

        Returns:
            List of option dictionaries

        Raises:
            ConfigurationError: If the data set is pending or not an array
        """
        options: List[Dict[str, Any]] = []
        data_set_name = field_config.get('dataSet')
        value_property = field_config.get('valueProperty')
        label_property = field_config.get('labelProperty')

        if data_set_name and value_property and label_property:
            params = {
                key: resolve_tokens(value, {'criteria': criteria}) if isinstance(value, str) else value
                for key, value in (field_config.get('dataSetParams') or {}).items()
            }

            next_page = None
            while True:
                result = self.data_source.get_data(data_set_name, params, next_page)
                if not is_complete(result):
                    raise ConfigurationError(
                        f"Pending response received for criteria field data set: {data_set_name}"
                    )
                if not isinstance(result.data, list):
                    raise ConfigurationError(f"Invalid criteria field data set: {data_set_name}")

                options = [
                    {'value': item.get(value_property), 'label': item.get(label_property)}
                    for item in result.data
                ] + options

                next_page = result.next_page
                if next_page:
                    self.logger.info(f"Criteria field options paging nextPage: {next_page}.")
                else:
                    self.logger.info('Criteria field options has no nextPage to return.')
                    break

            options.sort(key=sort_key(lambda option: option['label']))

        fixed_values = field_config.get('fixedValues')
        if fixed_values:
            context = token_context or {}
            options = [
                {
                    'value': (resolve_tokens(fixed['value'], context)
                              if isinstance(fixed.get('value'), str) else fixed.get('value')),
                    'label': resolve_tokens(fixed['label'], context)
                }
                for fixed in fixed_values
            ] + options

        return options
