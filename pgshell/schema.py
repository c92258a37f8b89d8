"""
Table introspection for the "\\d <table>" command.
"""

import sqlalchemy
from sqlalchemy.engine import Connection as SyncConnection

from pgshell.connection import Connection


def format_table(table_name: str, inspector: sqlalchemy.Inspector) -> str:
    """
    Lay out a table's columns, one per line, under an underlined table name.
    Each line is "<column> <type>", followed by markers for primary key,
    nullability, uniqueness and the referenced column of a foreign key:

        user
        ----
        id integer PK
        name varchar(32) unique
        org_id integer NULL FK >- org.id
    """
    # pylint: disable=too-many-locals
    dialect = inspector.dialect
    columns = inspector.get_columns(table_name)
    primary_key = set(
        inspector.get_pk_constraint(table_name).get("constrained_columns") or []
    )

    unique: set[str] = set()
    for constraint in inspector.get_unique_constraints(table_name):
        names = constraint.get("column_names") or []
        if len(names) == 1:
            unique.add(names[0])

    references: dict[str, str] = {}
    for fk in inspector.get_foreign_keys(table_name):
        local = fk.get("constrained_columns") or []
        remote = fk.get("referred_columns") or []
        for col, ref in zip(local, remote):
            references[col] = f"{fk.get('referred_table')}.{ref}"

    lines = [table_name, "-" * len(table_name)]
    for col in columns:
        name = col["name"]
        col_type = col["type"].compile(dialect=dialect).lower()
        fields: list[str] = [name, col_type]
        if name in primary_key:
            fields.append("PK")
        elif col.get("nullable", True):
            fields.append("NULL")

        if name in unique:
            fields.append("unique")

        if (ref := references.get(name)) is not None:
            fields.append(f"FK >- {ref}")

        lines.append(" ".join(fields))

    return "\n".join(lines)


async def describe_table(connection: Connection, table_name: str) -> str | None:
    """
    Describe a table in the connection's default schema. Table names are
    matched exactly.

    :returns: the formatted schema, or None if there's no such table
    """

    def describe(sync_connection: SyncConnection) -> str | None:
        inspector = sqlalchemy.inspect(sync_connection)
        if table_name not in inspector.get_table_names():
            return None

        return format_table(table_name, inspector)

    return await connection.run_sync(describe)
