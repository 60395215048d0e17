"""Idempotent schema reconciliation.

The reconciler brings a database that may already hold production data into
the shape described by ``Base.metadata``. It only ever creates: missing tables,
missing columns, missing indexes and missing foreign keys. Nothing is dropped
or altered in place.

Creating a table that does not exist yet is the only step allowed to abort
startup. Every other step is best-effort and is reported as an
``AdvisoryFailure`` when the database refuses it (legacy column types, engines
without constraint support, dialects that cannot ``ALTER`` constraints).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy import Index, MetaData, Table, inspect, insert, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import AddConstraint, CreateColumn, ForeignKeyConstraint

from home_inventory.errors import AdvisoryFailure, FatalError
from home_inventory.models import Base

logger = logging.getLogger('home_inventory.schema')

MYSQL_DIALECTS = {'mysql', 'mariadb'}

# Seeded into lookup tables that were just created or are still empty.
DEFAULT_LOOKUPS: dict[str, tuple[str, ...]] = {
    'types': ('Screws', 'PVC', 'Drills', 'Nails'),
    'locations': ('Attic', 'Shed', 'Garage'),
    'sizes': ('-',),
}


@dataclass
class ReconcileReport:
    created_tables: list[str] = field(default_factory=list)
    added_columns: list[str] = field(default_factory=list)
    added_indexes: list[str] = field(default_factory=list)
    added_constraints: list[str] = field(default_factory=list)
    seeded: dict[str, int] = field(default_factory=dict)
    advisories: list[AdvisoryFailure] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(
            self.created_tables
            or self.added_columns
            or self.added_indexes
            or self.added_constraints
            or any(self.seeded.values())
        )

    def summary(self) -> str:
        return (
            f'created={len(self.created_tables)} columns={len(self.added_columns)} '
            f'indexes={len(self.added_indexes)} constraints={len(self.added_constraints)} '
            f'seeded={sum(self.seeded.values())} advisories={len(self.advisories)}'
        )


def reconcile_schema(
    engine: Engine,
    metadata: MetaData = Base.metadata,
    *,
    seed: bool = True,
    lookups: dict[str, tuple[str, ...]] | None = None,
) -> ReconcileReport:
    report = ReconcileReport()
    with engine.connect() as conn:
        if conn.dialect.name in MYSQL_DIALECTS:
            _attempt(conn, report, 'set charset', 'connection', lambda c: c.exec_driver_sql('SET NAMES utf8mb4'))

        # sorted_tables puts referenced tables ahead of the tables pointing at them.
        for table in metadata.sorted_tables:
            existed = inspect(conn).has_table(table.name)
            conn.commit()
            if not existed:
                _create_table(conn, table)
                report.created_tables.append(table.name)
                continue
            _add_missing_columns(conn, table, report)
            _add_missing_indexes(conn, table, report)
            _add_missing_foreign_keys(conn, table, report)

        if seed:
            _seed_lookups(conn, metadata, report, lookups if lookups is not None else DEFAULT_LOOKUPS)

    if report.changed:
        logger.info('schema reconciled: %s', report.summary())
    else:
        logger.debug('schema already current: %s', report.summary())
    return report


def _attempt(
    conn: Connection,
    report: ReconcileReport,
    step: str,
    target: str,
    action: Callable[[Connection], object],
) -> bool:
    try:
        action(conn)
        conn.commit()
    except SQLAlchemyError as error:
        conn.rollback()
        failure = AdvisoryFailure(step=step, target=target, error=str(error).splitlines()[0])
        report.advisories.append(failure)
        logger.debug('advisory: %s', failure.describe())
        return False
    return True


def _create_table(conn: Connection, table: Table) -> None:
    try:
        table.create(conn, checkfirst=True)
        conn.commit()
    except SQLAlchemyError as error:
        conn.rollback()
        raise FatalError(f'could not create table {table.name}: {error}') from error


def _add_missing_columns(conn: Connection, table: Table, report: ReconcileReport) -> None:
    present = {column['name'] for column in inspect(conn).get_columns(table.name)}
    conn.commit()
    table_sql = conn.dialect.identifier_preparer.format_table(table)
    for column in table.columns:
        if column.name in present:
            continue

        def _add(c: Connection, column=column) -> None:
            column_sql = CreateColumn(column).compile(dialect=c.dialect)
            c.exec_driver_sql(f'ALTER TABLE {table_sql} ADD COLUMN {column_sql}')

        if _attempt(conn, report, 'add column', f'{table.name}.{column.name}', _add):
            report.added_columns.append(f'{table.name}.{column.name}')


def _add_missing_indexes(conn: Connection, table: Table, report: ReconcileReport) -> None:
    present = {index['name'] for index in inspect(conn).get_indexes(table.name)}
    conn.commit()
    for index in sorted(table.indexes, key=lambda idx: idx.name or ''):
        if index.name in present:
            continue

        def _create(c: Connection, index: Index = index) -> None:
            index.create(c, checkfirst=True)

        if _attempt(conn, report, 'add index', str(index.name), _create):
            report.added_indexes.append(str(index.name))


def _add_missing_foreign_keys(conn: Connection, table: Table, report: ReconcileReport) -> None:
    present = {tuple(fk['constrained_columns']) for fk in inspect(conn).get_foreign_keys(table.name)}
    conn.commit()
    for constraint in sorted(table.foreign_key_constraints, key=lambda fk: fk.name or ''):
        if tuple(constraint.column_keys) in present:
            continue
        referred = constraint.referred_table
        if conn.dialect.name in MYSQL_DIALECTS:
            # Constraints need InnoDB on both sides.
            referred_sql = conn.dialect.identifier_preparer.format_table(referred)
            _attempt(
                conn,
                report,
                'coerce engine',
                referred.name,
                lambda c: c.exec_driver_sql(f'ALTER TABLE {referred_sql} ENGINE=InnoDB'),
            )

        def _add(c: Connection, constraint: ForeignKeyConstraint = constraint) -> None:
            c.execute(AddConstraint(constraint))

        name = constraint.name or f'{table.name}({", ".join(constraint.column_keys)})'
        if _attempt(conn, report, 'add constraint', name, _add):
            report.added_constraints.append(name)


def _seed_lookups(
    conn: Connection,
    metadata: MetaData,
    report: ReconcileReport,
    lookups: dict[str, tuple[str, ...]],
) -> None:
    for table_name, names in lookups.items():
        table = metadata.tables.get(table_name)
        if table is None:
            continue
        created = table_name in report.created_tables
        inserted = 0

        def _seed(c: Connection, table: Table = table, names: tuple[str, ...] = names) -> None:
            nonlocal inserted
            existing = set(c.execute(select(table.c.name)).scalars())
            # Tables that already hold user rows keep them as they are.
            if existing and not created:
                return
            missing = [{'name': name} for name in names if name not in existing]
            if missing:
                c.execute(insert(table), missing)
            inserted = len(missing)

        if _attempt(conn, report, 'seed', table_name, _seed) and (created or inserted):
            report.seeded[table_name] = inserted
