"""Load entity type declarations from YAML."""

import logging
import os
import re
from pathlib import Path

import yaml

from relquery.core.entity_type import EntityType
from relquery.core.relation import Relation
from relquery.core.tenant import DEFAULT_TENANT_COLUMN
from relquery.validation import EntityValidationError

logger = logging.getLogger(__name__)


def substitute_env_vars(content: str) -> str:
    """Substitute environment variables in YAML content.

    Supports:
    - ${ENV_VAR} - replaced with environment variable value
    - ${ENV_VAR:-default} - replaced with value or default if not set

    Unset variables without a default are left untouched.

    Examples:
        >>> os.environ['APP_SCHEMA'] = 'public'
        >>> substitute_env_vars('table: ${APP_SCHEMA}.projects')
        'table: public.projects'
    """

    def replace_var(match):
        var_expr = match.group(1)
        if ":-" in var_expr:
            var_name, default = var_expr.split(":-", 1)
            return os.environ.get(var_name, default)
        value = os.environ.get(var_expr)
        if value is None:
            return match.group(0)
        return value

    return re.sub(r"\$\{([^}]+)\}", replace_var, content)


def parse_entities(content: str, default_tenant_column: str = DEFAULT_TENANT_COLUMN) -> list[EntityType]:
    """Parse entity declarations from a YAML string.

    Format:
    ```yaml
    entities:
      - name: project
        table: projects
        tenant_scoped: true
        relations:
          - name: tasks
            kind: one_to_many
            target: task
    ```

    ``tenant_scoped: true`` is shorthand for ``tenant_column: <default_tenant_column>``.

    Raises:
        EntityValidationError: If the document is malformed
    """
    data = yaml.safe_load(substitute_env_vars(content)) or {}
    if not isinstance(data, dict) or not isinstance(data.get("entities", []), list):
        raise EntityValidationError("Entity file must contain an 'entities' list")

    entities = []
    for raw in data.get("entities", []):
        raw = dict(raw)
        if raw.pop("tenant_scoped", False) and not raw.get("tenant_column"):
            raw["tenant_column"] = default_tenant_column
        try:
            relations = [Relation(**relation) for relation in raw.pop("relations", None) or []]
            entities.append(EntityType(relations=relations, **raw))
        except ValueError as e:
            raise EntityValidationError(f"Invalid entity declaration {raw.get('name', '?')!r}: {e}") from e
    return entities


def load_entities(path: str | Path, default_tenant_column: str = DEFAULT_TENANT_COLUMN) -> list[EntityType]:
    """Load entity declarations from a YAML file.

    Args:
        path: Path to the YAML file
        default_tenant_column: Column used for ``tenant_scoped: true`` entities

    Returns:
        Entity types in file order
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Entity file not found: {path}")
    entities = parse_entities(path.read_text(), default_tenant_column)
    logger.info("Loaded %d entity types from %s", len(entities), path)
    return entities
