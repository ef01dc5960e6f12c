"""QuickBooks Online accounting CLI.

Compiles and runs queries, CRUD operations, reports and PDF downloads against
the QuickBooks Online accounting API (https://quickbooks.api.intuit.com/v3).

Usage examples:
    qbo query Customer --where DisplayName=Acme
    qbo --format json query Invoice --where "Balance > 0" --all
    qbo query Bill --count
    qbo query Invoice --where "TxnDate >= 2024-01-01" --desc TxnDate --dry-run
    qbo --format yaml update Customer --body '{"Id": "1", "SyncToken": "0", "Notes": "vip"}' --dry-run
    qbo report ProfitAndLoss --param start_date=2024-01-01 --param end_date=2024-03-31
"""

from __future__ import annotations

import argparse
import json
import os
import re
import signal
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from tabulate import tabulate

from qbo_accounting import entities
from qbo_accounting.client import DEFAULT_MINOR_VERSION, AccountingClient, ClientConfig, prepare_update
from qbo_accounting.errors import ConfigError, InvalidQuery, PreconditionError
from qbo_accounting.query import FilterClause, compile_query, normalize_filters

DEFAULT_ENV_FILE = Path(".env")

_WHERE_RE = re.compile(r"^\s*([A-Za-z_][\w.]*)\s*(<=|>=|=|<|>|\bIN\b|\bLIKE\b)\s*(.*?)\s*$", re.IGNORECASE)


def load_env_file(path: Path) -> Dict[str, str]:
    env: Dict[str, str] = {}
    if not path.exists():
        return env
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        env[key.strip()] = value.strip()
    return env


def load_config(
    env_path: Path,
    *,
    use_sandbox: Optional[bool] = None,
    minor_version: Optional[int] = None,
    debug: bool = False,
    request_timeout: float = 60.0,
) -> ClientConfig:
    env_lookup = {**load_env_file(env_path), **os.environ}

    def pick(*keys: str) -> Optional[str]:
        for key in keys:
            val = env_lookup.get(key)
            if val:
                return val
        return None

    access_token = pick("QBO_ACCESS_TOKEN")
    realm_id = pick("QBO_REALM_ID")
    missing = [name for name, value in (("QBO_ACCESS_TOKEN", access_token), ("QBO_REALM_ID", realm_id)) if not value]
    if missing:
        raise SystemExit(
            "Missing config keys: " + ", ".join(missing) + f". Set them in {env_path} or as environment variables."
        )

    if use_sandbox is None:
        use_sandbox = (pick("QBO_ENVIRONMENT") or "sandbox").lower() != "production"
    if minor_version is None:
        raw_minor = pick("QBO_MINOR_VERSION")
        try:
            minor_version = int(raw_minor) if raw_minor else DEFAULT_MINOR_VERSION
        except ValueError as exc:
            raise SystemExit(f"Invalid QBO_MINOR_VERSION: {raw_minor}") from exc

    try:
        return ClientConfig(
            access_token=access_token,  # type: ignore[arg-type]
            realm_id=realm_id,  # type: ignore[arg-type]
            minor_version=minor_version,
            use_sandbox=use_sandbox,
            debug=debug,
            request_timeout=request_timeout,
        )
    except ConfigError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc


def _project_fields(rows: List[Dict[str, Any]], fields: List[str]) -> List[Dict[str, Any]]:
    return [{k: row.get(k, "") for k in fields} for row in rows]


def default_fields(rows: List[Dict[str, Any]]) -> List[str]:
    fields: List[str] = []
    for row in rows:
        for key, value in row.items():
            if key not in fields and isinstance(value, (str, int, float, bool)):
                fields.append(key)
    return fields


def format_output(rows: List[Dict[str, Any]], fields: List[str], output_format: str) -> str:
    projected = _project_fields(rows, fields)

    if output_format == "csv":
        import csv
        from io import StringIO

        buf = StringIO()
        writer = csv.DictWriter(buf, fieldnames=fields)
        writer.writeheader()
        writer.writerows(projected)
        return buf.getvalue()

    if output_format == "json":
        return json.dumps(projected, indent=2)

    if output_format == "yaml":
        import yaml

        return yaml.safe_dump(projected, sort_keys=False)

    # plain table (default)
    table = [[row.get(f, "") for f in fields] for row in projected]
    return tabulate(table, headers=fields, tablefmt="github")


def format_document(document: Any, output_format: str) -> str:
    if output_format == "yaml":
        import yaml

        return yaml.safe_dump(document, sort_keys=False)
    return json.dumps(document, indent=2)


def parse_json_body(raw: str) -> Dict[str, Any]:
    try:
        body = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid JSON body: {exc}") from exc
    if not isinstance(body, dict):
        raise SystemExit("Invalid JSON body: expected an object")
    return body


def _parse_scalar(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw.strip("'")


def parse_where(expr: str) -> FilterClause:
    """``"Balance > 0"`` -> ``FilterClause("Balance", 0, ">")``."""
    match = _WHERE_RE.match(expr)
    if not match:
        raise SystemExit(f"Invalid --where expression: {expr!r}. Use FIELD=VALUE or 'FIELD OP VALUE'.")
    field, operator, raw_value = match.groups()
    operator = operator.upper()
    if operator == "IN":
        values = raw_value.strip().strip("()")
        return FilterClause(field, [_parse_scalar(v.strip()) for v in values.split(",") if v.strip()], operator)
    return FilterClause(field, _parse_scalar(raw_value), operator)


def build_query_clauses(args: argparse.Namespace) -> List[Any]:
    clauses: List[Any] = []
    if args.filter:
        try:
            parsed = json.loads(args.filter)
        except json.JSONDecodeError as exc:
            raise SystemExit(f"Invalid --filter JSON: {exc}") from exc
        clauses.extend(normalize_filters(parsed))
    clauses.extend(parse_where(expr) for expr in args.where or [])
    for name in ("limit", "offset", "asc", "desc"):
        value = getattr(args, name)
        if value is not None:
            clauses.append({"field": name, "value": value})
    if args.count:
        clauses.append({"field": "count", "value": True})
    if args.all:
        clauses.append({"field": "fetchAll", "value": True})
    return clauses


def _split_fields(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    return [f.strip() for f in raw.split(",") if f.strip()]


# Handlers for subcommands


def handle_query(args: argparse.Namespace, client: AccountingClient) -> None:
    spec = entities.resolve_entity(args.entity, entities.FIND)
    clauses = build_query_clauses(args)
    if args.dry_run:
        print(compile_query(spec.name, clauses).text)
        return
    response = client.find(spec.name, clauses, max_pages=args.max_pages)
    query_response = response.get("QueryResponse") or {}
    if args.count:
        print(query_response.get("totalCount", 0))
        return
    rows = next((v for k, v in query_response.items() if k.lower() == spec.name.lower()), [])
    fields = _split_fields(args.fields) or default_fields(rows)
    print(format_output(rows, fields, args.format))


def handle_get(args: argparse.Namespace, client: AccountingClient) -> None:
    record = client.get(args.entity, args.id)
    print(format_document(record, args.format))


def handle_create(args: argparse.Namespace, client: AccountingClient) -> None:
    spec = entities.resolve_entity(args.entity, entities.CREATE)
    body = parse_json_body(args.body)
    if args.dry_run:
        print(format_document(body, args.format))
        return
    print(format_document(client.create(spec.name, body), args.format))


def handle_update(args: argparse.Namespace, client: AccountingClient) -> None:
    spec = entities.resolve_entity(args.entity, entities.UPDATE)
    body = parse_json_body(args.body)
    if args.void:
        body["void"] = True
    if args.dry_run:
        record, params = prepare_update(spec, body)
        print(format_document({"params": params, "body": record}, args.format))
        return
    print(format_document(client.update(spec.name, body), args.format))


def handle_delete(args: argparse.Namespace, client: AccountingClient) -> None:
    spec = entities.resolve_entity(args.entity, entities.DELETE)
    if args.dry_run:
        print(f"[dry-run] Would delete {spec.name} {args.id}")
        return
    client.delete(spec.name, args.id)
    print(f"Deleted {spec.name} {args.id}")


def handle_report(args: argparse.Namespace, client: AccountingClient) -> None:
    params: Dict[str, str] = {}
    for item in args.param or []:
        if "=" not in item:
            raise SystemExit(f"Invalid --param {item!r}. Use KEY=VALUE.")
        key, value = item.split("=", 1)
        params[key.strip()] = value.strip()
    print(format_document(client.report(args.report_type, params), args.format))


def handle_pdf(args: argparse.Namespace, client: AccountingClient) -> None:
    content = client.get_pdf(args.entity, args.id)
    output = Path(args.output)
    output.write_bytes(content)
    print(f"Saved {len(content)} bytes to {output}")


def handle_entities(args: argparse.Namespace, client: Optional[AccountingClient]) -> None:
    rows = [
        {
            "entity": spec.name,
            "plural": spec.plural,
            "operations": ", ".join(verb for verb in entities.VERBS if spec.supports(verb)),
            "void": spec.void_mode or "",
            "pdf": "yes" if spec.has_pdf else "",
        }
        for spec in entities.ENTITIES
    ]
    print(format_output(rows, ["entity", "plural", "operations", "void", "pdf"], args.format))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="QuickBooks Online accounting CLI")
    parser.add_argument(
        "--env-file",
        default=str(DEFAULT_ENV_FILE),
        help="Path to .env file (default: .env)",
    )
    parser.add_argument(
        "--format",
        default="plain",
        choices=["plain", "csv", "json", "yaml"],
        help="Output format",
    )
    parser.add_argument("--debug", action="store_true", help="Print verbose debug output for HTTP calls")
    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="HTTP connect/read timeout in seconds (default: 60)",
    )
    parser.add_argument("--minor-version", type=int, default=None, help="API minor version (default: 65)")
    env_group = parser.add_mutually_exclusive_group()
    env_group.add_argument("--sandbox", dest="use_sandbox", action="store_true", default=None, help="Use sandbox host")
    env_group.add_argument("--production", dest="use_sandbox", action="store_false", help="Use production host")

    subparsers = parser.add_subparsers(dest="command", required=True)

    query_p = subparsers.add_parser("query", help="Query records of an entity")
    query_p.add_argument("entity", help="Entity name (e.g. Invoice, Customer)")
    query_p.add_argument(
        "--where",
        action="append",
        help="Condition, FIELD=VALUE or 'FIELD OP VALUE' (repeatable; joined with and)",
    )
    query_p.add_argument("--filter", help="JSON object of field/value pairs or JSON list of clauses")
    query_p.add_argument("--limit", type=int, help="Page size (default 1000)")
    query_p.add_argument("--offset", type=int, help="1-based start position (default 1)")
    query_p.add_argument("--asc", help="Sort ascending by field")
    query_p.add_argument("--desc", help="Sort descending by field")
    query_p.add_argument("--count", action="store_true", help="Return only the number of matching records")
    query_p.add_argument("--all", action="store_true", help="Fetch every page")
    query_p.add_argument("--max-pages", type=int, default=None, help="Stop --all after this many pages")
    query_p.add_argument("--fields", help="Comma-separated fields to display")
    query_p.add_argument("--dry-run", action="store_true", help="Print the compiled query without calling the API")
    query_p.set_defaults(func=handle_query)

    get_p = subparsers.add_parser("get", help="Get a record by ID")
    get_p.add_argument("entity", help="Entity name")
    get_p.add_argument("id", help="Record ID")
    get_p.set_defaults(func=handle_get)

    create_p = subparsers.add_parser("create", help="Create a record")
    create_p.add_argument("entity", help="Entity name")
    create_p.add_argument("--body", required=True, help="JSON payload")
    create_p.add_argument("--dry-run", action="store_true", help="Print payload without calling the API")
    create_p.set_defaults(func=handle_create)

    update_p = subparsers.add_parser("update", help="Sparse-update a record (payload needs Id and SyncToken)")
    update_p.add_argument("entity", help="Entity name")
    update_p.add_argument("--body", required=True, help="JSON payload")
    update_p.add_argument("--void", action="store_true", help="Void the record instead of updating it")
    update_p.add_argument("--dry-run", action="store_true", help="Print the parameters and payload without calling the API")
    update_p.set_defaults(func=handle_update)

    delete_p = subparsers.add_parser("delete", help="Delete a record by ID")
    delete_p.add_argument("entity", help="Entity name")
    delete_p.add_argument("id", help="Record ID")
    delete_p.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview deletion without calling the API",
    )
    delete_p.set_defaults(func=handle_delete)

    report_p = subparsers.add_parser("report", help="Run a report")
    report_p.add_argument("report_type", help="Report name (e.g. ProfitAndLoss, BalanceSheet)")
    report_p.add_argument("--param", action="append", help="Report parameter KEY=VALUE (repeatable)")
    report_p.set_defaults(func=handle_report)

    pdf_p = subparsers.add_parser("pdf", help="Download a record as PDF")
    pdf_p.add_argument("entity", help="Entity name (e.g. Invoice, Estimate)")
    pdf_p.add_argument("id", help="Record ID")
    pdf_p.add_argument("--output", required=True, help="File to write")
    pdf_p.set_defaults(func=handle_pdf)

    entities_p = subparsers.add_parser("entities", help="List supported entities and operations")
    entities_p.set_defaults(func=handle_entities, offline=True)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    # Prevent BrokenPipeError when piping output
    if hasattr(signal, "SIGPIPE"):
        signal.signal(signal.SIGPIPE, signal.SIG_DFL)

    args = build_parser().parse_args(argv)
    client: Optional[AccountingClient] = None
    # dry runs and offline commands work without credentials
    if not getattr(args, "offline", False) and not getattr(args, "dry_run", False):
        config = load_config(
            Path(args.env_file),
            use_sandbox=args.use_sandbox,
            minor_version=args.minor_version,
            debug=args.debug,
            request_timeout=args.timeout,
        )
        client = AccountingClient(config)

    try:
        args.func(args, client)
    except requests.HTTPError as exc:
        resp = exc.response
        if resp is None:
            raise SystemExit(f"API error: {exc}") from exc
        raise SystemExit(f"API error {resp.status_code}: {resp.text}") from exc
    except requests.RequestException as exc:
        raise SystemExit(f"Request failed: {exc}") from exc
    except (InvalidQuery, PreconditionError) as exc:
        raise SystemExit(str(exc)) from exc


if __name__ == "__main__":
    main()
