"""
Command line entry point for retrieving a declared data set

Loads connector settings, builds the REST data source and prints the
result of `get_data` as JSON.
"""

import argparse
import json
import logging
import sys
import traceback
from pathlib import Path
from typing import Dict, Any, List, Optional

from .config_loader import ConfigLoader, ConnectorSettings, configure_logging
from .http_client import HTTPClient
from .models import is_complete
from .rest_data_source import RestDataSource

EXIT_COMPLETE = 0
EXIT_ERROR = 1
EXIT_PENDING = 2

logger = logging.getLogger(__name__)


def parse_params(pairs: List[str]) -> Dict[str, Any]:
    """Parse `key=value` pairs; values that are valid JSON are decoded"""
    params = {}
    for pair in pairs:
        key, separator, value = pair.partition('=')
        if not separator or not key:
            raise ValueError(f"Invalid parameter '{pair}'. Expected key=value")
        try:
            params[key] = json.loads(value)
        except json.JSONDecodeError:
            params[key] = value
    return params


def build_data_source(settings: ConnectorSettings) -> RestDataSource:
    """Create the HTTP client and data source described by connector settings"""
    config = ConfigLoader.load_data_source_config(settings.data_source, settings.base_url)

    http_client = HTTPClient(
        base_url=config.base_url,
        max_retries=settings.retries.get('max_attempts', 3),
        backoff_factor=settings.retries.get('backoff_factor', 2.0),
        requests_per_second=settings.rate_limits.get('requests_per_second', 2.0)
    )
    if settings.authentication:
        ConfigLoader.validate_environment_variables(settings)
        http_client.authenticate(settings.authentication)

    return RestDataSource(config, messages=settings.messages,
                          headers=http_client.headers, http_client=http_client)


def result_to_dict(result) -> Dict[str, Any]:
    if is_complete(result):
        return {
            'status': result.status.value,
            'data': result.data,
            'source': result.source,
            'nextPage': result.next_page
        }
    return {
        'status': result.status.value,
        'delay': result.delay,
        'maxRetry': result.max_retry,
        'metadata': result.metadata
    }


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function"""
    parser = argparse.ArgumentParser(
        description="Retrieve a declared REST data set",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Retrieve the first page of a data set
  hypersync-adapter --config configs/example_connector.toml --data-set users

  # Resume from a page value and pass parameters
  hypersync-adapter --config configs/example_connector.toml --data-set users --page 2 --param groupId=42

  # Validate configuration only
  hypersync-adapter --config configs/example_connector.toml --validate-only
        """
    )

    parser.add_argument("--config", required=True, help="Path to TOML configuration file")
    parser.add_argument("--data-set", help="Name of the data set to retrieve")
    parser.add_argument("--param", action="append", default=[],
                        help="Parameter as key=value, may be repeated")
    parser.add_argument("--page", help="Page value returned by a previous run")
    parser.add_argument("--validate-only", action="store_true", help="Only validate configuration")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)

    try:
        settings = ConfigLoader.load_toml_config(Path(args.config))
        logging_settings = dict(settings.logging)
        if args.verbose:
            logging_settings['level'] = 'DEBUG'
        configure_logging(logging_settings)

        data_source = build_data_source(settings)

        if args.validate_only:
            config = data_source.get_config()
            print("Configuration validation passed!")
            print(f"Connector: {settings.name}")
            print(f"Base URL: {config.base_url}")
            print(f"Data sets: {', '.join(sorted(config.data_sets))}")
            return EXIT_COMPLETE

        if not args.data_set:
            print("--data-set is required unless --validate-only is given")
            parser.print_help()
            return EXIT_ERROR

        try:
            result = data_source.get_data(args.data_set, parse_params(args.param), args.page)
        finally:
            data_source.http_client.close_connection()

        print(json.dumps(result_to_dict(result), indent=2, default=str))
        return EXIT_COMPLETE if is_complete(result) else EXIT_PENDING

    except Exception as e:
        logger.error(f"Execution failed: {e}")
        print(f"\nExecution failed: {e}", file=sys.stderr)
        if args.verbose:
            print(f"Traceback: {traceback.format_exc()}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
