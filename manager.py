import logging
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import joinedload

from errors import DuplicateKeyError, ForeignKeyViolationError, ResourceNotFoundError
from models import InsuranceClaim, PolicyHolder, utcnow
from store import EntityStore
from validation import (
    validate_create_insurance_claim,
    validate_create_policy_holder,
    validate_positive_id,
    validate_update_insurance_claim,
    validate_update_policy_holder,
)

logger = logging.getLogger(__name__)

CLAIMS_NEWEST_FIRST = (InsuranceClaim.date_filed.desc(), InsuranceClaim.id.desc())
WITH_POLICY_HOLDER = (joinedload(InsuranceClaim.policy_holder, innerjoin=True),)


def next_timestamp(previous: Optional[datetime]) -> datetime:
    """Current time, nudged forward so it is always later than ``previous``."""
    now = utcnow()
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


class ClaimsManager:
    def __init__(self, store: EntityStore):
        self.store = store

    # Policy holder operations
    def create_policy_holder(self, data) -> PolicyHolder:
        payload = validate_create_policy_holder(data)
        now = utcnow()
        with self.store.transaction():
            ph = self.store.insert(PolicyHolder(**asdict(payload), created_at=now, updated_at=now))
            logger.info(f"Created policy holder {ph.id} ({ph.policy_number})")
        return ph

    def get_policy_holders(self) -> List[PolicyHolder]:
        return self.store.fetch_all(PolicyHolder, order_by=(PolicyHolder.name.asc(), PolicyHolder.id.asc()))

    def get_policy_holder(self, policy_holder_id) -> Optional[PolicyHolder]:
        validate_positive_id(policy_holder_id, 'id')
        return self.store.get(PolicyHolder, policy_holder_id)

    def update_policy_holder(self, data) -> Optional[PolicyHolder]:
        payload = validate_update_policy_holder(data)
        with self.store.transaction():
            ph = self.store.get(PolicyHolder, payload.id)
            if ph is None:
                return None
            changes = payload.changes()
            changes['updated_at'] = next_timestamp(ph.updated_at)
            self.store.update(ph, changes)
            logger.info(f"Updated policy holder {ph.id}: {sorted(changes)}")
        return ph

    # Insurance claim operations
    def create_insurance_claim(self, data) -> InsuranceClaim:
        payload = validate_create_insurance_claim(data)
        now = utcnow()
        with self.store.transaction():
            if not self.store.exists(PolicyHolder, id=payload.policy_holder_id):
                raise ResourceNotFoundError(
                    f"Policy holder with ID {payload.policy_holder_id} not found",
                    field='policy_holder_id',
                )
            if self.store.exists(InsuranceClaim, claim_id=payload.claim_id):
                raise DuplicateKeyError(f"Claim with ID {payload.claim_id} already exists", field='claim_id')
            claim = self.store.insert(InsuranceClaim(**asdict(payload), created_at=now, updated_at=now))
            logger.info(f"Created insurance claim {claim.id} ({claim.claim_id})")
        return claim

    def get_insurance_claims(self) -> List[InsuranceClaim]:
        return self.store.fetch_all(InsuranceClaim, order_by=CLAIMS_NEWEST_FIRST, options=WITH_POLICY_HOLDER)

    def get_insurance_claim(self, claim_id) -> Optional[InsuranceClaim]:
        validate_positive_id(claim_id, 'id')
        claims = self.store.fetch_filtered(InsuranceClaim, options=WITH_POLICY_HOLDER, id=claim_id)
        return claims[0] if claims else None

    def update_insurance_claim(self, data) -> Optional[InsuranceClaim]:
        payload = validate_update_insurance_claim(data)
        with self.store.transaction():
            claim = self.store.get(InsuranceClaim, payload.id)
            if claim is None:
                return None
            changes = payload.changes()
            if 'policy_holder_id' in changes and not self.store.exists(PolicyHolder, id=changes['policy_holder_id']):
                raise ForeignKeyViolationError(
                    f"Policy holder with ID {changes['policy_holder_id']} not found",
                    field='policy_holder_id',
                )
            if changes.get('claim_id', claim.claim_id) != claim.claim_id and \
                    self.store.exists(InsuranceClaim, claim_id=changes['claim_id']):
                raise DuplicateKeyError(f"Claim with ID {changes['claim_id']} already exists", field='claim_id')
            # status moves freely between all five values; no transition table
            changes['updated_at'] = next_timestamp(claim.updated_at)
            self.store.update(claim, changes)
            logger.info(f"Updated insurance claim {claim.id}: {sorted(changes)}")
        return claim

    def get_claims_by_policy_holder(self, policy_holder_id) -> List[InsuranceClaim]:
        validate_positive_id(policy_holder_id, 'policy_holder_id')
        return self.store.fetch_filtered(
            InsuranceClaim,
            order_by=CLAIMS_NEWEST_FIRST,
            policy_holder_id=policy_holder_id,
        )
