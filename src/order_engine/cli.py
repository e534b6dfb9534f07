import argparse
import json
import logging
import sys
from typing import List

from .errors import OrderEngineError
from .field_registry import FieldDescriptor, FieldDescriptorRegistry, parse_descriptors
from .form_state import FormState
from .order_api import OrderApi
from .order_env import OrderEnv
from .order_logging import create_logger, set_log_level
from .schema_builder import build_form_schema
from .validation import FormValidator

logger = create_logger('order_engine.cli')


def load_descriptors(args) -> List[FieldDescriptor]:
    if args.descriptors:
        with open(args.descriptors, 'r', encoding='utf-8') as f:
            raw = json.load(f)
        if isinstance(raw, dict):
            raw = raw.get('service_type_fields', [])
        return parse_descriptors(raw)
    return FieldDescriptorRegistry(OrderApi()).fetch(args.classification_id)


def cmd_schema(args) -> int:
    schema, defaults = build_form_schema(load_descriptors(args))
    print(json.dumps({'schema': schema.json_schema, 'defaults': defaults}, indent=2, ensure_ascii=False, default=str))
    return 0


def cmd_validate(args) -> int:
    schema, defaults = build_form_schema(load_descriptors(args))
    with open(args.payload, 'r', encoding='utf-8') as f:
        payload = json.load(f)
    form_state = FormState(defaults)
    result = FormValidator(schema).validate(form_state, payload)
    if result.valid:
        print('valid')
        return 0
    print(json.dumps(result.errors, indent=2, ensure_ascii=False))
    return 1


def main(argv: List[str] = None) -> int:
    """Main entry point for command-line interface."""
    parser = argparse.ArgumentParser(
        description="Build and check service order form schemas"
    )
    parser.add_argument(
        "--env-file",
        type=str,
        help="Path to the .env file with the API settings"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    schema_parser = subparsers.add_parser("schema", help="Print the JSON schema and defaults of a classification")
    schema_parser.add_argument("classification_id", type=str, help="Service type id")
    schema_parser.add_argument("--descriptors", type=str, help="Read field descriptors from a JSON file instead of the API")
    schema_parser.set_defaults(func=cmd_schema)

    validate_parser = subparsers.add_parser("validate", help="Validate a payload file against a classification")
    validate_parser.add_argument("classification_id", type=str, help="Service type id")
    validate_parser.add_argument("payload", type=str, help="Path to a JSON file with the form values")
    validate_parser.add_argument("--descriptors", type=str, help="Read field descriptors from a JSON file instead of the API")
    validate_parser.set_defaults(func=cmd_validate)

    args = parser.parse_args(argv)
    if args.verbose:
        set_log_level(logging.DEBUG)
    OrderEnv.load_env(args.env_file, force=bool(args.env_file))

    try:
        return args.func(args)
    except (OrderEngineError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
