"""Configuration file tooling.

Usage:
    python -m oven_monitor.lib.config validate oven_monitor.yaml [--strict] [--format json]
    python -m oven_monitor.lib.config create --output oven_monitor.yaml [--overwrite]
    python -m oven_monitor.lib.config schema [--output schema.json]
    python -m oven_monitor.lib.config show oven_monitor.yaml [--format json]

``show`` prints the effective configuration, environment overrides included.
"""

import argparse
import json
import sys
from pathlib import Path

import yaml

from . import ConfigManager, ConfigurationError, save_config_to_file
from .validation import create_config_schema, generate_example_config, validate_config_file
from ...models import MonitorConfiguration


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m oven_monitor.lib.config",
        description="Oven Monitor configuration tools"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Include warnings and notes")
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    validate = commands.add_parser("validate", help="Validate a configuration file")
    validate.add_argument("config_file", type=Path)
    validate.add_argument("--strict", action="store_true", help="Treat warnings as errors")
    validate.add_argument("--format", choices=["text", "json"], default="text")
    validate.set_defaults(handler=cmd_validate)

    create = commands.add_parser("create", help="Write a configuration file with default values")
    create.add_argument("--output", "-o", type=Path, required=True)
    create.add_argument("--overwrite", action="store_true", help="Replace an existing file")
    create.set_defaults(handler=cmd_create)

    schema = commands.add_parser("schema", help="Print the configuration JSON schema")
    schema.add_argument("--output", "-o", type=Path, help="Write to a file instead of stdout")
    schema.set_defaults(handler=cmd_schema)

    show = commands.add_parser("show", help="Print the effective configuration")
    show.add_argument("config_file", type=Path)
    show.add_argument("--format", choices=["yaml", "json"], default="yaml")
    show.set_defaults(handler=cmd_show)

    return parser


def cmd_validate(args) -> int:
    result = validate_config_file(args.config_file, strict=args.strict)

    if args.format == "json":
        print(json.dumps(result.get_summary(), indent=2))
    else:
        print(f"{args.config_file}:")
        result.print_results(verbose=args.verbose)

    return 0 if result.is_valid else 1


def cmd_create(args) -> int:
    if args.output.exists() and not args.overwrite:
        print(f"{args.output} already exists (use --overwrite)", file=sys.stderr)
        return 1

    try:
        save_config_to_file(MonitorConfiguration(**generate_example_config()), args.output)
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        return 1

    print(f"Wrote {args.output}")
    return 0


def cmd_schema(args) -> int:
    text = json.dumps(create_config_schema(), indent=2, sort_keys=True)

    if args.output is None:
        print(text)
    else:
        args.output.write_text(text, encoding="utf-8")
        print(f"Wrote {args.output}")

    return 0


def cmd_show(args) -> int:
    try:
        data = ConfigManager(args.config_file).load_config().export_dict()
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True), end="")

    return 0


def main() -> int:
    parser = create_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 1

    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
