"""
Column helpers shared by every model module.

  - enum_column(): closed-set status/type column backed by a str Enum
  - utcnow():      timezone-aware "now" used for defaults and bookkeeping
  - as_utc():      normalises naive datetimes read back from SQLite
"""

from datetime import datetime, timezone

from portorders.models import db


def enum_column(enum_cls, **kwargs):
    """Closed-set string column storing the enum *values* (not member names)."""
    return db.Column(
        db.Enum(
            enum_cls,
            native_enum=False,
            create_constraint=True,
            length=40,
            validate_strings=True,
            values_callable=lambda e: [m.value for m in e],
        ),
        **kwargs,
    )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on DateTime(timezone=True) columns; treat naive as UTC."""
    if dt is not None and dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
