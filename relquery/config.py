"""Configuration file format for relquery."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from relquery.core.tenant import DEFAULT_TENANT_COLUMN


class DuckDBConnection(BaseModel):
    """DuckDB connection configuration."""

    type: Literal["duckdb"] = "duckdb"
    path: str = Field(..., description="Path to DuckDB database file or :memory:")


class PostgreSQLConnection(BaseModel):
    """PostgreSQL connection configuration."""

    type: Literal["postgres"] = "postgres"
    host: str = Field(..., description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    database: str = Field(..., description="Database name")
    username: str = Field(..., description="Username")
    password: str | None = Field(default=None, description="Password")


Connection = DuckDBConnection | PostgreSQLConnection


class CacheSettings(BaseModel):
    """Whether derived data (relation counts) may be served from the external cache."""

    enabled: bool = Field(default=False, description="Route count queries through the cache collaborator")
    ttl: int = Field(default=60, ge=0, description="Seconds a cached count stays valid")


class RelqueryConfig(BaseModel):
    """relquery configuration file format.

    Can be saved as relquery.yaml or relquery.json.

    Example YAML:
        entities_path: entities.yaml
        tenant_column: tenant_id
        connection:
          type: duckdb
          path: data/app.db
        cache:
          enabled: true
          ttl: 300
    """

    connection: Connection | None = Field(default=None, description="Database connection configuration")
    cache: CacheSettings = Field(default_factory=CacheSettings, description="Count cache settings")
    tenant_column: str = Field(
        default=DEFAULT_TENANT_COLUMN, description="Tenant column for entities declared tenant_scoped"
    )
    entities_path: str | None = Field(default=None, description="YAML file with entity declarations")

    def resolve_paths(self, base_dir: Path | None = None) -> "RelqueryConfig":
        """Resolve relative paths to absolute paths.

        Args:
            base_dir: Base directory for resolving relative paths (defaults to cwd)

        Returns:
            New config with resolved paths
        """
        base = base_dir or Path.cwd()

        entities_path = self.entities_path
        if entities_path and not Path(entities_path).is_absolute():
            entities_path = str((base / entities_path).resolve())

        connection = self.connection
        if connection and isinstance(connection, DuckDBConnection) and connection.path != ":memory:":
            db_p = Path(connection.path)
            if not db_p.is_absolute():
                db_p = (base / db_p).resolve()
            connection = DuckDBConnection(type="duckdb", path=str(db_p))

        return self.model_copy(update={"connection": connection, "entities_path": entities_path})


def load_config(config_path: Path) -> RelqueryConfig:
    """Load configuration from YAML or JSON file.

    Args:
        config_path: Path to config file (relquery.yaml or relquery.json)

    Returns:
        Loaded and validated configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file format is invalid
    """
    import json

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    if suffix in {".yaml", ".yml"}:
        import yaml

        with open(config_path) as f:
            data = yaml.safe_load(f)
    elif suffix == ".json":
        with open(config_path) as f:
            data = json.load(f)
    else:
        raise ValueError(f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json")

    config = RelqueryConfig(**(data or {}))

    return config.resolve_paths(config_path.parent)


def find_config(start_dir: Path | None = None) -> Path | None:
    """Find config file by searching up the directory tree.

    Searches for relquery.yaml, relquery.yml, or relquery.json.

    Args:
        start_dir: Directory to start searching from (defaults to cwd)

    Returns:
        Path to config file if found, None otherwise
    """
    current = (start_dir or Path.cwd()).resolve()

    while True:
        for name in ["relquery.yaml", "relquery.yml", "relquery.json"]:
            config_path = current / name
            if config_path.exists():
                return config_path

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def build_connection_string(config: RelqueryConfig) -> str:
    """Build database connection string from config.

    Args:
        config: relquery configuration

    Returns:
        Connection string for Session
    """
    if not config.connection:
        return "duckdb:///:memory:"

    if isinstance(config.connection, DuckDBConnection):
        return f"duckdb:///{config.connection.path}"
    elif isinstance(config.connection, PostgreSQLConnection):
        password_part = f":{config.connection.password}" if config.connection.password else ""
        return (
            f"postgres://{config.connection.username}{password_part}@"
            f"{config.connection.host}:{config.connection.port}/{config.connection.database}"
        )
    else:
        raise ValueError(f"Unknown connection type: {type(config.connection)}")
