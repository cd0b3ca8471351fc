"""
Column types shared by the models

JSONB on PostgreSQL, plain JSON elsewhere (the test suite runs on SQLite).
"""
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

JSONType = JSON().with_variant(JSONB(), "postgresql")
