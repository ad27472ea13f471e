from dataclasses import dataclass, fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Union


class ClaimType(str, Enum):
    AUTO = 'AUTO'
    HOME = 'HOME'
    LIFE = 'LIFE'
    HEALTH = 'HEALTH'
    PROPERTY = 'PROPERTY'
    LIABILITY = 'LIABILITY'


class ClaimStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    INVESTIGATING = 'INVESTIGATING'
    SETTLED = 'SETTLED'


class _Unset:
    """Marks an update field the caller did not supply."""

    def __repr__(self):
        return 'UNSET'

    def __bool__(self):
        return False


UNSET = _Unset()


class _PartialUpdate:
    def changes(self) -> Dict[str, object]:
        """Return only the fields that were supplied, keyed by column name."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != 'id' and getattr(self, f.name) is not UNSET
        }


@dataclass
class CreatePolicyHolderInput:
    name: str
    policy_number: str
    email: str
    phone: str
    address: str
    date_of_birth: date


@dataclass
class UpdatePolicyHolderInput(_PartialUpdate):
    id: int
    name: Union[str, _Unset] = UNSET
    policy_number: Union[str, _Unset] = UNSET
    email: Union[str, _Unset] = UNSET
    phone: Union[str, _Unset] = UNSET
    address: Union[str, _Unset] = UNSET
    date_of_birth: Union[date, _Unset] = UNSET


@dataclass
class CreateInsuranceClaimInput:
    claim_id: str
    policy_holder_id: int
    date_filed: datetime
    claim_type: ClaimType
    amount: Decimal
    status: ClaimStatus = ClaimStatus.PENDING
    description: Optional[str] = None


@dataclass
class UpdateInsuranceClaimInput(_PartialUpdate):
    id: int
    claim_id: Union[str, _Unset] = UNSET
    policy_holder_id: Union[int, _Unset] = UNSET
    date_filed: Union[datetime, _Unset] = UNSET
    claim_type: Union[ClaimType, _Unset] = UNSET
    status: Union[ClaimStatus, _Unset] = UNSET
    amount: Union[Decimal, _Unset] = UNSET
    # None here means "clear the description", UNSET means "leave it alone"
    description: Union[Optional[str], _Unset] = UNSET
