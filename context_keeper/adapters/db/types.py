from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


class StringList(TypeDecorator):
    """
    Ordered list of strings stored as a JSON array (JSONB on PostgreSQL).

    NULL is never written or returned: a missing value is an empty list.
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        if value is None:
            return []
        if isinstance(value, str):
            raise TypeError("StringList expects a sequence of strings, not a string")
        return [str(item) for item in value]

    def process_result_value(self, value, dialect):
        if value is None:
            return []
        return [str(item) for item in value]
