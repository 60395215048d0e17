from __future__ import annotations

import argparse
import sys

import uvicorn

from home_inventory.application import configure_logging, create_app
from home_inventory.config import get_settings
from home_inventory.db import Database
from home_inventory.errors import FatalError
from home_inventory.schema import reconcile_schema


def reconcile(*, seed: bool) -> int:
    settings = get_settings()
    configure_logging(settings)
    database = Database(settings)
    try:
        report = reconcile_schema(database.engine, seed=seed)
    except FatalError as exc:
        print(f'Schema reconciliation failed: {exc}', file=sys.stderr)
        return 1
    finally:
        database.dispose()

    print(f'Schema reconciliation complete: {report.summary()}')
    for table in report.created_tables:
        print(f'  created table {table}')
    for column in report.added_columns:
        print(f'  added column {column}')
    for index in report.added_indexes:
        print(f'  added index {index}')
    for constraint in report.added_constraints:
        print(f'  added constraint {constraint}')
    for advisory in report.advisories:
        print(f'  skipped: {advisory.describe()}')
    return 0


def serve(*, host: str | None, port: int | None) -> int:
    settings = get_settings()
    uvicorn.run(create_app(settings), host=host or settings.host, port=port or settings.port)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description='Home inventory service.')
    subcommands = parser.add_subparsers(dest='command', required=True)

    serve_parser = subcommands.add_parser('serve', help='Run the HTTP service.')
    serve_parser.add_argument('--host', default=None, help='Bind address (defaults to the configured host).')
    serve_parser.add_argument('--port', type=int, default=None, help='Bind port (defaults to the configured port).')

    reconcile_parser = subcommands.add_parser('reconcile', help='Bring the database schema up to date and exit.')
    reconcile_parser.add_argument(
        '--no-seed',
        action='store_true',
        help='Do not insert default lookup rows into newly created tables.',
    )

    args = parser.parse_args(argv)
    if args.command == 'serve':
        return serve(host=args.host, port=args.port)
    return reconcile(seed=not args.no_seed)


if __name__ == '__main__':
    sys.exit(main())
