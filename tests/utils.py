"""Shared test helpers: schema, seed data and entity declarations."""

from relquery import EntityType, Relation, Session

SCHEMA = [
    "CREATE SEQUENCE projects_seq START 1000",
    "CREATE SEQUENCE tasks_seq START 1000",
    "CREATE SEQUENCE comments_seq START 1000",
    "CREATE TABLE projects (id INTEGER PRIMARY KEY DEFAULT nextval('projects_seq'), "
    "tenant_id INTEGER, title VARCHAR, owner_id INTEGER)",
    "CREATE INDEX projects_tenant_idx ON projects (tenant_id)",
    "CREATE TABLE tasks (id INTEGER PRIMARY KEY DEFAULT nextval('tasks_seq'), project_id INTEGER, title VARCHAR)",
    "CREATE TABLE comments (id INTEGER PRIMARY KEY DEFAULT nextval('comments_seq'), task_id INTEGER, body VARCHAR)",
    "CREATE TABLE countries (id INTEGER PRIMARY KEY, name VARCHAR)",
    "CREATE TABLE users (id INTEGER PRIMARY KEY, name VARCHAR, country_id INTEGER)",
    "CREATE TABLE profiles (id INTEGER PRIMARY KEY, user_id INTEGER, bio VARCHAR)",
    "CREATE TABLE roles (id INTEGER PRIMARY KEY, name VARCHAR)",
    "CREATE TABLE role_user (user_id INTEGER, role_id INTEGER, granted_by VARCHAR)",
    "CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER, title VARCHAR)",
    "CREATE TABLE images (id INTEGER PRIMARY KEY, morph_id INTEGER, morph_type VARCHAR, url VARCHAR)",
]

SEED = [
    "INSERT INTO projects VALUES (1, 1, 'Apollo', 1), (2, 1, 'Borealis', 2), (3, 1, 'Cygnus', NULL), "
    "(4, 2, 'Other tenant', 3)",
    "INSERT INTO tasks VALUES (1, 1, 'Design'), (2, 1, 'Build'), (3, 3, 'Launch'), (4, 4, 'Hidden')",
    "INSERT INTO comments VALUES (1, 1, 'c1'), (2, 1, 'c2'), (3, 3, 'c3'), (4, 4, 'c4')",
    "INSERT INTO countries VALUES (1, 'Netherlands'), (2, 'Portugal'), (3, 'Iceland')",
    "INSERT INTO users VALUES (1, 'alice', 1), (2, 'bob', 1), (3, 'carol', 2)",
    "INSERT INTO profiles VALUES (1, 1, 'Alice bio'), (2, 2, 'Bob bio')",
    "INSERT INTO roles VALUES (1, 'admin'), (2, 'editor')",
    "INSERT INTO role_user VALUES (1, 1, 'root'), (1, 2, 'root'), (2, 2, 'alice')",
    "INSERT INTO posts VALUES (1, 1, 'Hello'), (2, 1, 'Again'), (3, 3, 'Ola')",
    "INSERT INTO images VALUES (1, 1, 'user', 'alice.png'), (2, 1, 'post', 'hello-1.png'), "
    "(3, 1, 'post', 'hello-2.png'), (4, 3, 'user', 'carol.png')",
]


def entity_types() -> list[EntityType]:
    return [
        EntityType(
            name="project",
            table="projects",
            tenant_column="tenant_id",
            relations=[
                Relation(name="tasks", kind="one_to_many", target="task"),
                Relation(name="owner", kind="many_to_one", target="user", foreign_key="owner_id"),
            ],
        ),
        EntityType(
            name="task",
            table="tasks",
            relations=[
                Relation(name="comments", kind="one_to_many", target="comment"),
                Relation(name="project", kind="many_to_one", target="project"),
            ],
        ),
        EntityType(
            name="comment",
            table="comments",
            columns=["id", "task_id", "body"],
            relations=[Relation(name="task", kind="many_to_one", target="task")],
        ),
        EntityType(
            name="country",
            table="countries",
            relations=[
                Relation(name="users", kind="one_to_many", target="user"),
                Relation(
                    name="posts",
                    kind="has_many_through",
                    target="post",
                    through="user",
                    through_foreign_key="country_id",
                    foreign_key="user_id",
                ),
            ],
        ),
        EntityType(
            name="user",
            table="users",
            strict_mode=True,
            allowed_lazy=["profile"],
            relations=[
                Relation(name="profile", kind="one_to_one", target="profile"),
                Relation(
                    name="roles",
                    kind="many_to_many",
                    target="role",
                    pivot_table="role_user",
                    pivot_source_key="user_id",
                    pivot_target_key="role_id",
                    pivot_columns=["granted_by"],
                ),
                Relation(name="posts", kind="one_to_many", target="post"),
                Relation(name="country", kind="many_to_one", target="country"),
                Relation(name="images", kind="polymorphic_many", target="image"),
                Relation(name="avatar", kind="polymorphic_one", target="image"),
            ],
        ),
        EntityType(name="profile", table="profiles"),
        EntityType(name="role", table="roles"),
        EntityType(
            name="post",
            table="posts",
            relations=[
                Relation(name="author", kind="many_to_one", target="user", foreign_key="user_id"),
                Relation(name="images", kind="polymorphic_many", target="image"),
            ],
        ),
        EntityType(
            name="image",
            table="images",
            relations=[Relation(name="imageable", kind="polymorphic_to", allowed_types=["post", "user"])],
        ),
    ]


def build_session(tenant=1, **kwargs) -> Session:
    """In-memory session with the test schema, seed data and all entity types."""
    session = Session(tenant=tenant, **kwargs)
    for statement in SCHEMA + SEED:
        session.execute(statement)
    for entity_type in entity_types():
        session.add_entity(entity_type)
    session.reset_query_log()
    return session


class DictCache:
    """Minimal cache collaborator recording get/set calls."""

    def __init__(self):
        self.store = {}
        self.sets = []

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ttl):
        self.store[key] = value
        self.sets.append((key, ttl))
