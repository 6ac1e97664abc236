"""
DataSourceBase module defining the data source contract and helper accessors
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from .exceptions import ConfigurationError, IncompleteResultError
from .models import CompleteResult, DataSetResult, is_complete


class DataSourceBase(ABC):
    """
    Abstract base class for a data source object

    Subclasses implement `get_data`; the helpers below narrow its result
    to a single object or an array.
    """

    @abstractmethod
    def get_data(self, data_set_name: str, params: Optional[Dict[str, Any]] = None,
                 page: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None,
                 organization: Optional[Dict[str, Any]] = None) -> DataSetResult:
        """
        Retrieve data for a named data set

        Args:
            data_set_name: Name of the data set to retrieve
            params: Parameter values used when retrieving data
            page: Page value to continue fetching data from a previous sync
            metadata: Metadata from a previous sync run if requeued
            organization: Localization data used for formatting
        """
        ...

    def get_data_object(self, data_set_name: str,
                        params: Optional[Dict[str, Any]] = None) -> CompleteResult:
        """Retrieve a data object singleton"""
        response = self.get_data(data_set_name, params)
        if not is_complete(response):
            raise IncompleteResultError(
                f"Invalid response received for data set: {data_set_name}", response
            )
        if isinstance(response.data, list):
            raise ConfigurationError(f"Received array from {data_set_name}. Expected object.")
        return response

    def get_data_object_array(self, data_set_name: str,
                              params: Optional[Dict[str, Any]] = None) -> CompleteResult:
        """Retrieve a data object collection"""
        response = self.get_data(data_set_name, params)
        if not is_complete(response):
            raise IncompleteResultError(
                f"Invalid response received for data set: {data_set_name}", response
            )
        if not isinstance(response.data, list):
            raise ConfigurationError(f"Received object from {data_set_name}. Expected array.")
        return response
