"""
Shared base for all database models.
All models should import Base from here to ensure they're in the same registry.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import registry

# Create a single shared registry and base for all models
mapper_registry = registry()
Base = mapper_registry.generate_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def make_json_serializable(obj: Any) -> Any:
    """Recursively convert non-serializable objects (date, datetime, Decimal) to JSON types."""
    if isinstance(obj, dict):
        return {str(k): make_json_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [make_json_serializable(item) for item in obj]
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    return obj
