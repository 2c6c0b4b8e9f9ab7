# catalog_tool.py
"""
Command line checks for booking form catalog files.

    python catalog_tool.py validate form.json [--enabled]
    python catalog_tool.py normalize form.json
    python catalog_tool.py denormalize normalized.json
    python catalog_tool.py check form.json

Input files may carry // comments or small syntax slips; they are loaded
leniently. Results are printed as JSON on stdout, exit status 1 on failure.
"""
import argparse
import sys
from typing import List, Optional

from pydantic import ValidationError

import service_catalog.config  # noqa: F401  (dotenv + logging setup)
from service_catalog.json_io import JSONLoadError, color_print, dump_json, load_json_file
from service_catalog.migration import (
    MigrationIntegrityError,
    check_integrity,
    to_wire_document,
    wire_to_normalized,
)
from service_catalog.models import NormalizedDocument
from service_catalog.node_ops import validate_tree
from service_catalog.validation import can_save_form, get_save_blocked_message, validate_form_configuration


def cmd_validate(args: argparse.Namespace) -> int:
    wire = load_json_file(args.file)
    result = validate_form_configuration(wire)
    print(dump_json(result))
    if args.enabled and not can_save_form(True, result):
        color_print(f"Live form cannot be saved: {get_save_blocked_message(result)}", color="red")
        return 1
    if not result.is_valid:
        color_print(f"{len(result.issues)} issue(s), {len(result.warnings)} warning(s)", color="yellow")
        return 1
    color_print(f"valid ({len(result.warnings)} warning(s))", color="green")
    return 0


def cmd_normalize(args: argparse.Namespace) -> int:
    wire = load_json_file(args.file)
    document = wire_to_normalized(wire)
    print(dump_json(document))
    report = check_integrity(document)
    if not report["isValid"]:
        for error in report["errors"]:
            color_print(error, color="red")
        return 1
    return 0


def cmd_denormalize(args: argparse.Namespace) -> int:
    data = load_json_file(args.file)
    document = NormalizedDocument.model_validate(data)
    print(dump_json(to_wire_document(document)))
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    wire = load_json_file(args.file)
    tree = wire.get("serviceTree") if isinstance(wire, dict) and "serviceTree" in wire else wire
    if not isinstance(tree, dict):
        structure = {"isValid": False, "errors": ["Missing service tree"]}
    else:
        structure = validate_tree(tree)
    errors = list(structure["errors"])
    if structure["isValid"]:
        errors.extend(check_integrity(wire_to_normalized({"serviceTree": tree}))["errors"])
    print(dump_json({"isValid": not errors, "errors": errors}))
    for error in errors:
        color_print(error, color="red")
    return 1 if errors else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate and convert booking form catalog files.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_validate = subparsers.add_parser("validate", help="Run the business validation rules")
    p_validate.add_argument("file", help="Nested wire document (JSON)")
    p_validate.add_argument("--enabled", action="store_true", help="Treat the form as live: invalid means unsaveable")
    p_validate.set_defaults(func=cmd_validate)

    p_normalize = subparsers.add_parser("normalize", help="Nested wire document -> normalized maps")
    p_normalize.add_argument("file")
    p_normalize.set_defaults(func=cmd_normalize)

    p_denormalize = subparsers.add_parser("denormalize", help="Normalized maps -> nested wire document")
    p_denormalize.add_argument("file")
    p_denormalize.set_defaults(func=cmd_denormalize)

    p_check = subparsers.add_parser("check", help="Structural tree check and normalized integrity check")
    p_check.add_argument("file", help="Wire document or bare service tree")
    p_check.set_defaults(func=cmd_check)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (JSONLoadError, OSError) as e:
        color_print(f"Cannot read {args.file}: {e}", color="red")
    except (MigrationIntegrityError, ValidationError) as e:
        color_print(f"Corrupt document: {e}", color="red")
    return 1


if __name__ == "__main__":
    sys.exit(main())
