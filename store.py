"""Transactional access to the policy holder and claim tables.

Every operation runs inside ``EntityStore.transaction()``: the session is
committed when the block exits cleanly and rolled back on any exception.
Constraint violations reported by the database are re-raised as
``DuplicateKeyError`` or ``ForeignKeyViolationError`` so callers never have to
inspect driver exceptions.
"""
import logging
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import DatabaseError, DuplicateKeyError, ForeignKeyViolationError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = '23505'
FOREIGN_KEY_VIOLATION = '23503'

# column name -> user facing label, checked against the driver message
UNIQUE_FIELDS = {
    'policy_number': 'Policy number',
    'claim_id': 'Claim ID',
}
FOREIGN_KEY_FIELDS = ('policy_holder_id',)


def _sqlstate(exc):
    orig = exc.orig
    return getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)


def translate_integrity_error(exc):
    """Map an IntegrityError onto the typed error the caller can act on."""
    message = str(exc.orig)
    code = _sqlstate(exc)
    lowered = message.lower()
    if code == UNIQUE_VIOLATION or 'unique' in lowered:
        for field, label in UNIQUE_FIELDS.items():
            if field in message:
                return DuplicateKeyError(f"{label} already exists", field=field)
        return DuplicateKeyError(f"Duplicate key: {message}")
    if code == FOREIGN_KEY_VIOLATION or 'foreign key' in lowered:
        field = next((f for f in FOREIGN_KEY_FIELDS if f in message), 'policy_holder_id')
        return ForeignKeyViolationError("Referenced policy holder does not exist", field=field)
    return DatabaseError(f"Database error: {message}")


class EntityStore:
    def __init__(self, session):
        self.session = session

    @contextmanager
    def transaction(self):
        try:
            yield self
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            error = translate_integrity_error(e)
            logger.warning(f"Integrity violation: {error}")
            raise error from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Store operation failed: {e}")
            raise DatabaseError(f"Database error: {str(e)}") from e
        except Exception:
            self.session.rollback()
            raise

    def insert(self, record):
        self.session.add(record)
        # flush so the generated id and constraint errors surface here
        self.session.flush()
        return record

    def get(self, model, record_id):
        return self.session.get(model, record_id)

    def exists(self, model, **criteria):
        stmt = select(model.id).filter_by(**criteria).limit(1)
        return self.session.execute(stmt).first() is not None

    def fetch_all(self, model, order_by=(), options=()):
        stmt = select(model).options(*options).order_by(*order_by)
        return list(self.session.execute(stmt).scalars().unique())

    def fetch_filtered(self, model, order_by=(), options=(), **criteria):
        stmt = select(model).options(*options).filter_by(**criteria).order_by(*order_by)
        return list(self.session.execute(stmt).scalars().unique())

    def update(self, record, changes):
        for key, value in changes.items():
            setattr(record, key, value)
        self.session.flush()
        return record
