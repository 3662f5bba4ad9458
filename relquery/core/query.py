"""Query builder for entity types using the SQLGlot builder API."""

import copy
import json
from collections.abc import Callable, Iterable
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlglot import exp

from relquery.core.entity import Entity
from relquery.core.entity_type import EntityType
from relquery.core.relation import Relation
from relquery.core.tenant import TenantScope
from relquery.db.base import validate_identifier
from relquery.validation import ConfigurationError, validate_operator

if TYPE_CHECKING:
    from relquery.core.pagination import Page
    from relquery.core.session import Session

PIVOT_PREFIX = "__pivot__"
KEY_ALIAS = "__key"
AGGREGATE_ALIAS = "__count"
VALUE_ALIAS = "__value"

_UNSET = object()

_COMPARISONS = {
    "=": exp.EQ,
    "!=": exp.NEQ,
    "<>": exp.NEQ,
    "<": exp.LT,
    "<=": exp.LTE,
    ">": exp.GT,
    ">=": exp.GTE,
}

RelationCallback = Callable[["QueryBuilder"], "QueryBuilder | None"]


def sql_value(value: Any) -> exp.Expression:
    """Convert a Python value into a SQL literal expression."""
    if isinstance(value, exp.Expression):
        return value
    if isinstance(value, (dict, list)):
        return exp.Literal.string(json.dumps(value))
    if isinstance(value, Decimal):
        return exp.Literal.number(str(value))
    return exp.convert(value)


def in_condition(column: exp.Expression, values: Iterable[Any]) -> exp.Expression:
    """``column IN (...)``, or ``FALSE`` for an empty value list."""
    unique = list(dict.fromkeys(v for v in values if v is not None))
    if not unique:
        return exp.false()
    return column.isin(*[sql_value(v) for v in unique])


def apply_callback(query: "QueryBuilder", callback: RelationCallback | None) -> "QueryBuilder":
    """Run a relation constraint callback; it may mutate the builder or return a new one."""
    if callback is None:
        return query
    result = callback(query)
    return query if result is None else result


class QueryBuilder:
    """Chainable query against one entity type.

    Builder methods mutate the builder and return it. Column names and
    operators are validated when the method is called, not when the query
    runs. Every compiled statement carries the tenant predicate of the
    entity type unless ``without_scopes()`` was called.

    Example:
        >>> session.query("project").where("status", "open").with_("tasks.comments").all()
    """

    def __init__(self, session: "Session", entity_type: EntityType, alias: str | None = None):
        self.session = session
        self.entity_type = entity_type
        self.alias = alias or entity_type.table.split(".")[-1]
        validate_identifier(self.alias, "table alias")

        self._conditions: list[exp.Expression | Callable[["QueryBuilder"], exp.Expression]] = []
        self._order: list[exp.Ordered] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._joins: list[tuple[exp.Expression, exp.Expression]] = []
        self._extra_selects: list[exp.Expression] = []
        self._scoped: list[tuple[EntityType, str]] = [(entity_type, self.alias)]
        self._apply_scopes = True
        self._subquery_count = 0

        from relquery.core.eager import EagerLoadSpec

        self._eager = EagerLoadSpec()
        self._counts: dict[str, RelationCallback | None] = {}

    def copy(self) -> "QueryBuilder":
        """Independent copy of this builder."""
        clone = copy.copy(self)
        clone._conditions = list(self._conditions)
        clone._order = list(self._order)
        clone._joins = list(self._joins)
        clone._extra_selects = list(self._extra_selects)
        clone._scoped = list(self._scoped)
        clone._eager = self._eager.copy()
        clone._counts = dict(self._counts)
        return clone

    # Column handling

    def column(self, name: str) -> exp.Column:
        """Validated, alias-qualified column expression.

        Accepts ``column`` or ``alias.column``.

        Raises:
            ConfigurationError: If the name is not a valid identifier or not a known column
        """
        try:
            validate_identifier(name, "column")
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        if "." in name:
            table, _, column = name.rpartition(".")
            if table == self.alias and not self.entity_type.has_column(column):
                raise ConfigurationError(f"Unknown column '{column}' on entity type '{self.entity_type.name}'")
            return exp.column(column, table=table)

        if not self.entity_type.has_column(name):
            raise ConfigurationError(f"Unknown column '{name}' on entity type '{self.entity_type.name}'")
        return exp.column(name, table=self.alias)

    # Predicates

    def where(self, column: str, operator: Any, value: Any = _UNSET) -> "QueryBuilder":
        """Add ``column <operator> value``; ``where(column, value)`` means equality.

        Raises:
            ConfigurationError: For unknown columns or unsupported operators
        """
        if value is _UNSET:
            operator, value = "=", operator
        elif not isinstance(operator, str):
            raise ConfigurationError(f"Operator must be a string, got {type(operator).__name__}")

        op = validate_operator(operator)
        col = self.column(column)

        if op in ("in", "not in"):
            if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
                raise ConfigurationError(f"Operator '{op}' expects a list of values for column '{column}'")
            values = list(value)
            if any(v is None for v in values):
                raise ConfigurationError(
                    f"Operator '{op}' cannot compare against None for column '{column}'; "
                    "use where_null() or where_not_null()"
                )
            condition = in_condition(col, values)
            if op == "not in":
                # NOT IN over nothing excludes nothing
                condition = exp.Not(this=condition) if isinstance(condition, exp.In) else exp.true()
            self._conditions.append(condition)
            return self

        if op in ("is", "is not") and value is not None:
            raise ConfigurationError(f"Operator '{op}' only compares against None")

        if value is None:
            if op not in ("is", "is not", "=", "!=", "<>"):
                raise ConfigurationError(f"Operator '{op}' cannot compare against None")
            condition = exp.Is(this=col, expression=exp.null())
            negated = op in ("is not", "!=", "<>")
            self._conditions.append(exp.Not(this=condition) if negated else condition)
            return self

        if op == "like":
            self._conditions.append(exp.Like(this=col, expression=sql_value(value)))
        elif op == "not like":
            self._conditions.append(exp.Not(this=exp.Like(this=col, expression=sql_value(value))))
        else:
            self._conditions.append(_COMPARISONS[op](this=col, expression=sql_value(value)))
        return self

    def where_in(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        return self.where(column, "in", list(values))

    def where_not_in(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        return self.where(column, "not in", list(values))

    def where_null(self, column: str) -> "QueryBuilder":
        return self.where(column, "is", None)

    def where_not_null(self, column: str) -> "QueryBuilder":
        return self.where(column, "is not", None)

    def where_expression(self, condition: exp.Expression) -> "QueryBuilder":
        """Add a prebuilt SQLGlot condition."""
        self._conditions.append(condition)
        return self

    def order_by(self, column: str, direction: str = "asc") -> "QueryBuilder":
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            raise ConfigurationError(f"Invalid order direction '{direction}'. Must be one of: asc, desc")
        self._order.append(exp.Ordered(this=self.column(column), desc=direction == "desc"))
        return self

    def limit(self, limit: int | None) -> "QueryBuilder":
        if limit is not None and (not isinstance(limit, int) or limit < 0):
            raise ConfigurationError(f"Limit must be a non-negative integer, got {limit!r}")
        self._limit = limit
        return self

    def offset(self, offset: int | None) -> "QueryBuilder":
        if offset is not None and (not isinstance(offset, int) or offset < 0):
            raise ConfigurationError(f"Offset must be a non-negative integer, got {offset!r}")
        self._offset = offset
        return self

    def without_scopes(self) -> "QueryBuilder":
        """Skip the tenant predicate. For privileged code paths only."""
        self._apply_scopes = False
        return self

    @property
    def has_ordering(self) -> bool:
        return bool(self._order)

    # Relations

    def with_(self, *relations: str | dict[str, RelationCallback | None]) -> "QueryBuilder":
        """Eager load relations after the root query runs.

        Accepts dot-separated paths (``"tasks.comments"``) and mappings of
        path -> constraint callback.

        Raises:
            ConfigurationError: If any relation in a path is not registered
        """
        from relquery.core.eager import EagerLoadSpec

        spec = EagerLoadSpec.parse(relations)
        self.session.eager.validate(self.entity_type, spec)
        self._eager.merge(spec)
        return self

    def with_count(self, *relations: str | dict[str, RelationCallback | None]) -> "QueryBuilder":
        """Attach ``<relation>_count`` attributes after the root query runs."""
        for item in relations:
            mapping = item if isinstance(item, dict) else {item: None}
            for name, callback in mapping.items():
                relation = self.session.registry.resolve(self.entity_type.name, name)
                if relation.kind == "polymorphic_to":
                    raise ConfigurationError(f"Relation '{name}' of kind polymorphic_to cannot be counted")
                self._counts[name] = callback
        return self

    def has(
        self,
        relation: str,
        operator: str = ">=",
        count: int = 1,
        callback: RelationCallback | None = None,
    ) -> "QueryBuilder":
        """Keep rows whose related rows satisfy ``COUNT(...) <operator> count``.

        Compiles to ``EXISTS`` for ``>= 1`` and to a correlated count
        sub-query otherwise. Dotted paths nest: ``has("tasks.comments")``.

        Raises:
            ConfigurationError: For unknown relations, unsupported operators or polymorphic_to relations
        """
        op = validate_operator(operator)
        if op not in _COMPARISONS:
            raise ConfigurationError(f"Operator '{operator}' is not a comparison usable with has()")

        if "." in relation:
            head, _, rest = relation.partition(".")
            return self.has(head, ">=", 1, lambda q: q.has(rest, operator, count, callback))

        descriptor = self.session.registry.resolve(self.entity_type.name, relation)
        if descriptor.kind == "polymorphic_to":
            raise ConfigurationError(f"has() is not supported for polymorphic_to relation '{relation}'")

        self._subquery_count += 1
        alias = f"{self.alias}_{relation}_{self._subquery_count}"

        def build(query: "QueryBuilder") -> exp.Expression:
            sub = query._relation_subquery(descriptor, alias, callback)
            if op == ">=" and count == 1:
                return exp.Exists(this=sub.select(exp.Literal.number(1)))
            counted = sub.select(exp.Count(this=exp.Star()))
            return _COMPARISONS[op](this=exp.Subquery(this=counted), expression=exp.Literal.number(count))

        # validate eagerly; scope and tenant come from the compiling builder
        build(self)
        self._conditions.append(build)
        return self

    def where_has(self, relation: str, callback: RelationCallback | None = None) -> "QueryBuilder":
        return self.has(relation, ">=", 1, callback)

    def doesnt_have(self, relation: str, callback: RelationCallback | None = None) -> "QueryBuilder":
        return self.has(relation, "<", 1, callback)

    def _relation_subquery(self, relation: Relation, alias: str, callback: RelationCallback | None) -> exp.Select:
        target = self.session.registry.get_entity(relation.target)
        sub = apply_callback(QueryBuilder(self.session, target, alias=alias), callback)
        if not self._apply_scopes:
            sub.without_scopes()
        parent_column = sub.bind_to_parent(relation, self.entity_type)
        outer_column = exp.column(relation.local_key(self.entity_type), table=self.alias)
        sub.where_expression(exp.EQ(this=parent_column, expression=outer_column))
        return sub.select_expression(projections=[])

    def bind_to_parent(self, relation: Relation, source: EntityType) -> exp.Column:
        """Join whatever links this (target) builder back to ``source`` rows.

        Returns the column holding the source-side key, so callers can
        filter it with ``IN (...)``, correlate it, or group by it.
        """
        if relation.kind in ("one_to_one", "one_to_many"):
            return self.column(relation.target_foreign_key(source))

        if relation.kind in ("polymorphic_one", "polymorphic_many"):
            self.where(relation.morph_type_column, "=", source.morph_name)
            return self.column(relation.morph_id_column)

        if relation.kind == "many_to_one":
            return self.column(relation.target_key(self.entity_type))

        if relation.kind == "many_to_many":
            pivot_alias = f"{self.alias}_pivot"
            pivot = exp.to_table(relation.pivot_table)
            pivot.set("alias", exp.TableAlias(this=exp.to_identifier(pivot_alias)))
            on = exp.EQ(
                this=exp.column(relation.pivot_target_key, table=pivot_alias),
                expression=self.column(relation.target_key(self.entity_type)),
            )
            self._joins.append((pivot, on))
            source_column = exp.column(relation.pivot_source_key, table=pivot_alias)
            for column in [relation.pivot_source_key, *relation.pivot_columns]:
                self._extra_selects.append(
                    exp.alias_(exp.column(column, table=pivot_alias), f"{PIVOT_PREFIX}{column}")
                )
            return source_column

        if relation.kind == "has_many_through":
            through = self.session.registry.get_entity(relation.through)
            through_alias = f"{self.alias}_through"
            table = exp.to_table(through.table)
            table.set("alias", exp.TableAlias(this=exp.to_identifier(through_alias)))
            on = exp.EQ(
                this=self.column(relation.foreign_key),
                expression=exp.column(relation.bridge_key(through), table=through_alias),
            )
            self._joins.append((table, on))
            self._scoped.append((through, through_alias))
            return exp.column(relation.through_foreign_key, table=through_alias)

        raise ConfigurationError(f"Relation '{relation.name}' of kind {relation.kind} cannot be joined")

    # Compilation

    def _table(self) -> exp.Table:
        table = exp.to_table(self.entity_type.table)
        if self.alias != self.entity_type.table:
            table.set("alias", exp.TableAlias(this=exp.to_identifier(self.alias)))
        return table

    def condition(self) -> exp.Expression | None:
        """All predicates ANDed together, tenant scope included."""
        conditions = [c(self) if callable(c) else c for c in self._conditions]
        if self._apply_scopes:
            for entity_type, alias in self._scoped:
                predicate = TenantScope.predicate(entity_type, self.session.tenant, alias=alias)
                if predicate is not None:
                    conditions.append(predicate)
        if not conditions:
            return None
        return exp.and_(*conditions)

    def select_expression(self, projections: list[exp.Expression] | None = None) -> exp.Select:
        """SELECT without ORDER BY / LIMIT applied."""
        if projections is None:
            projections = [exp.Column(this=exp.Star(), table=exp.to_identifier(self.alias)), *self._extra_selects]
        query = exp.select(*projections).from_(self._table())
        for table, on in self._joins:
            query = query.join(table, on=on)
        condition = self.condition()
        if condition is not None:
            query = query.where(condition)
        return query

    def to_sql(self) -> str:
        """Compile the SELECT this builder describes."""
        query = self.select_expression()
        if self._order:
            query = query.order_by(*self._order)
        if self._limit is not None:
            query = query.limit(self._limit)
        if self._offset is not None:
            query = query.offset(self._offset)
        return query.sql(dialect=self.session.dialect)

    # Execution

    def rows(self) -> list[dict[str, Any]]:
        return self.session.fetch(self.to_sql())

    def hydrate(self, row: dict[str, Any]) -> Entity:
        attributes = {}
        pivot = {}
        for column, value in row.items():
            if column.startswith(PIVOT_PREFIX):
                pivot[column[len(PIVOT_PREFIX) :]] = value
            else:
                attributes[column] = value
        entity = Entity(self.entity_type, attributes, session=self.session, exists=True)
        if pivot:
            entity.pivot = pivot
        return entity

    def all(self) -> list[Entity]:
        """Run the query and eager load requested relations.

        Returns:
            Entities in query order (empty list when nothing matches)
        """
        entities = [self.hydrate(row) for row in self.rows()]
        if entities:
            if self._eager:
                self.session.eager.load(entities, self._eager)
            if self._counts:
                self.session.eager.load_counts(entities, self._counts)
        return entities

    def one(self) -> Entity | None:
        """First matching entity, or None.

        Several matching rows are not an error; only the first is returned.
        """
        results = self.copy().limit(1).all()
        return results[0] if results else None

    first = one

    def find(self, key: Any) -> Entity | None:
        """Entity with the given primary key, or None."""
        return self.copy().where(self.entity_type.primary_key, "=", key).one()

    def aggregate_rows(self, key: exp.Expression) -> list[dict[str, Any]]:
        """``SELECT key, COUNT(*) ... GROUP BY key`` over this builder's predicates."""
        query = self.select_expression(
            projections=[exp.alias_(key, KEY_ALIAS), exp.alias_(exp.Count(this=exp.Star()), AGGREGATE_ALIAS)]
        ).group_by(key)
        return self.session.fetch(query.sql(dialect=self.session.dialect), cacheable=True)

    def count(self) -> int:
        """Number of matching rows (ignores ordering, limit and offset)."""
        query = self.select_expression(projections=[exp.alias_(exp.Count(this=exp.Star()), AGGREGATE_ALIAS)])
        rows = self.session.fetch(query.sql(dialect=self.session.dialect), cacheable=True)
        return int(rows[0][AGGREGATE_ALIAS]) if rows else 0

    def exists(self) -> bool:
        query = self.select_expression(projections=[exp.alias_(exp.Literal.number(1), "present")]).limit(1)
        return bool(self.session.fetch(query.sql(dialect=self.session.dialect)))

    def pluck(self, column: str) -> list[Any]:
        """Values of one column, in query order."""
        col = self.column(column)
        query = self.select_expression(projections=[exp.alias_(col, VALUE_ALIAS)])
        if self._order:
            query = query.order_by(*self._order)
        if self._limit is not None:
            query = query.limit(self._limit)
        if self._offset is not None:
            query = query.offset(self._offset)
        return [row[VALUE_ALIAS] for row in self.session.fetch(query.sql(dialect=self.session.dialect))]

    def paginate(self, page: int = 1, per_page: int = 15, path: str = "") -> "Page":
        """Run a count and one page of the query.

        Args:
            page: 1-based page number
            per_page: Items per page
            path: Base path used to build pagination links
        """
        from relquery.core.pagination import Page

        if page < 1 or per_page < 1:
            raise ConfigurationError("page and per_page must be positive integers")
        total = self.count()
        items = self.copy().limit(per_page).offset((page - 1) * per_page).all()
        return Page(items=items, page=page, per_page=per_page, total=total, path=path)

    def _mutation_condition(self) -> exp.Expression | None:
        if self._joins:
            raise ConfigurationError("Bulk update/delete is not supported on joined queries")
        return self.condition()

    def update(self, values: dict[str, Any]) -> int:
        """Update every matching row; returns the number of rows changed."""
        if not values:
            return 0
        for column in values:
            self.column(column)
        if self.entity_type.primary_key in values:
            raise ConfigurationError(f"Primary key '{self.entity_type.primary_key}' cannot be updated")

        statement = exp.update(
            self._table(),
            {column: sql_value(value) for column, value in values.items()},
            where=self._mutation_condition(),
        )
        statement.set("returning", exp.Returning(expressions=[exp.column(self.entity_type.primary_key)]))
        return len(self.session.fetch(statement.sql(dialect=self.session.dialect)))

    def delete(self) -> int:
        """Delete every matching row; returns the number of rows removed."""
        statement = exp.delete(self._table(), where=self._mutation_condition())
        statement.set("returning", exp.Returning(expressions=[exp.column(self.entity_type.primary_key)]))
        return len(self.session.fetch(statement.sql(dialect=self.session.dialect)))

    def __iter__(self):
        return iter(self.all())

    def __repr__(self) -> str:
        return f"<QueryBuilder {self.entity_type.name}: {self.to_sql()}>"
