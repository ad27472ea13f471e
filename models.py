import sqlite3
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Enum, UniqueConstraint, event
from sqlalchemy.engine import Engine

from entities import ClaimStatus, ClaimType

db = SQLAlchemy()


def utcnow():
    """Naive UTC, the convention for every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores REFERENCES clauses unless asked per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class PolicyHolder(db.Model):
    __tablename__ = 'policy_holders'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.Text, nullable=False)
    policy_number = db.Column(db.Text, nullable=False)
    email = db.Column(db.Text, nullable=False)
    phone = db.Column(db.Text, nullable=False)
    address = db.Column(db.Text, nullable=False)
    date_of_birth = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    claims = db.relationship('InsuranceClaim', back_populates='policy_holder', lazy=True)

    __table_args__ = (
        UniqueConstraint('policy_number', name='uq_policy_holders_policy_number'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'policy_number': self.policy_number,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'date_of_birth': self.date_of_birth,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    def __repr__(self):
        return f"<PolicyHolder {self.id} {self.policy_number}>"


class InsuranceClaim(db.Model):
    __tablename__ = 'insurance_claims'
    id = db.Column(db.Integer, primary_key=True)
    claim_id = db.Column(db.Text, nullable=False)
    policy_holder_id = db.Column(
        db.Integer,
        db.ForeignKey('policy_holders.id', name='fk_insurance_claims_policy_holder_id'),
        nullable=False,
        index=True,
    )
    date_filed = db.Column(db.DateTime, nullable=False, index=True)
    claim_type = db.Column(Enum(ClaimType, name='claim_type', create_constraint=True), nullable=False)
    status = db.Column(
        Enum(ClaimStatus, name='claim_status', create_constraint=True),
        nullable=False,
        default=ClaimStatus.PENDING,
    )
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    policy_holder = db.relationship('PolicyHolder', back_populates='claims', lazy=True)

    __table_args__ = (
        UniqueConstraint('claim_id', name='uq_insurance_claims_claim_id'),
    )

    def to_dict(self, include_policy_holder=False):
        data = {
            'id': self.id,
            'claim_id': self.claim_id,
            'policy_holder_id': self.policy_holder_id,
            'date_filed': self.date_filed,
            'claim_type': self.claim_type,
            'status': self.status,
            'amount': self.amount,
            'description': self.description,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
        if include_policy_holder:
            data['policy_holder'] = self.policy_holder.to_dict()
        return data

    def __repr__(self):
        return f"<InsuranceClaim {self.id} {self.claim_id}>"
