"""Composition of parameterized partial-update statements."""

from typing import Any, List, Sequence, Tuple

from psycopg import sql


class UpdateBuilder:
    """Accumulate ``column = %s`` assignments and their values.

    Column names are always quoted identifiers and values are always bound
    parameters; nothing from the request is spliced into the SQL text.
    """

    def __init__(self, table: str):
        self.table = table
        self._assignments: List[Tuple[str, sql.Composable, Any]] = []
        self._touched: List[str] = []

    def set(self, column: str, value: Any) -> "UpdateBuilder":
        self._assignments.append((column, sql.Placeholder(), value))
        return self

    def touch(self, column: str = "updated_at") -> "UpdateBuilder":
        """Set ``column`` to ``CURRENT_TIMESTAMP`` without a parameter."""
        self._touched.append(column)
        return self

    @property
    def columns(self) -> List[str]:
        return [column for column, _, _ in self._assignments]

    @property
    def params(self) -> List[Any]:
        return [value for _, _, value in self._assignments]

    def __bool__(self) -> bool:
        return bool(self._assignments)

    def build(
        self, key_column: str, key_value: Any, returning: Sequence[str] = ()
    ) -> Tuple[sql.Composed, List[Any]]:
        if not self._assignments:
            raise ValueError("No columns to update")

        assignments = [
            sql.SQL("{} = {}").format(sql.Identifier(column), placeholder)
            for column, placeholder, _ in self._assignments
        ]
        assignments.extend(
            sql.SQL("{} = CURRENT_TIMESTAMP").format(sql.Identifier(column))
            for column in self._touched
        )
        query = sql.SQL("UPDATE {table} SET {assignments} WHERE {key} = {value}").format(
            table=sql.Identifier(self.table),
            assignments=sql.SQL(", ").join(assignments),
            key=sql.Identifier(key_column),
            value=sql.Placeholder(),
        )
        if returning:
            query = sql.Composed(
                [query, sql.SQL(" RETURNING "), sql.SQL(", ").join(map(sql.Identifier, returning))]
            )
        return query, self.params + [key_value]
