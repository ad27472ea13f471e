import re
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from entities import (
    ClaimStatus,
    ClaimType,
    CreateInsuranceClaimInput,
    CreatePolicyHolderInput,
    UpdateInsuranceClaimInput,
    UpdatePolicyHolderInput,
)
from errors import ValidationError

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

# NUMERIC(12, 2)
AMOUNT_QUANTUM = Decimal('0.01')
AMOUNT_LIMIT = Decimal('10000000000')


def validate_string_field(value, field_name):
    if not value or not isinstance(value, str):
        raise ValidationError({field_name: f"{field_name} must be a non-empty string"})
    return value


def validate_optional_text(value, field_name):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError({field_name: f"{field_name} must be a string or null"})
    return value


def validate_email(email, field_name='email'):
    if not isinstance(email, str) or not EMAIL_PATTERN.match(email):
        raise ValidationError({field_name: "Invalid email format"})
    return email


def validate_positive_id(value, field_name):
    # bool is an int subclass; True must not pass as id 1
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError({field_name: f"{field_name} must be a positive integer"})
    return value


def validate_id(value, field_name='id'):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError({field_name: f"{field_name} must be an integer"})
    return value


def validate_amount(amount, field_name='amount'):
    """Parse ``amount`` exactly and round it half-up to cents."""
    if isinstance(amount, bool) or amount is None:
        raise ValidationError({field_name: "Amount must be a valid number"})
    try:
        amount = Decimal(str(amount))
    except (TypeError, ValueError, InvalidOperation):
        raise ValidationError({field_name: "Amount must be a valid number"})
    if not amount.is_finite():
        raise ValidationError({field_name: "Amount must be a valid number"})
    if amount >= AMOUNT_LIMIT:
        raise ValidationError({field_name: f"Amount must be less than {AMOUNT_LIMIT}"})
    amount = amount.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
    # checked after rounding so 0.001 never lands as 0.00
    if amount <= 0:
        raise ValidationError({field_name: "Claim amount must be positive"})
    if amount >= AMOUNT_LIMIT:
        raise ValidationError({field_name: f"Amount must be less than {AMOUNT_LIMIT}"})
    return amount


def validate_date(value, field_name):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value, "%Y-%m-%d").date()
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(value).date()
        except ValueError:
            pass
    raise ValidationError({field_name: "Invalid date format. Use YYYY-MM-DD"})


def _as_naive_utc(value):
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def validate_datetime(value, field_name):
    if isinstance(value, datetime):
        return _as_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    if isinstance(value, str):
        try:
            return _as_naive_utc(datetime.fromisoformat(value))
        except ValueError:
            pass
    raise ValidationError({field_name: "Invalid date format. Use YYYY-MM-DD or an ISO-8601 date-time"})


def _enum_validator(enum_cls):
    allowed = ', '.join(member.value for member in enum_cls)

    def validate(value, field_name):
        if isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(value)
        except ValueError:
            raise ValidationError({field_name: f"{field_name} must be one of: {allowed}"})

    return validate


validate_claim_type = _enum_validator(ClaimType)
validate_status = _enum_validator(ClaimStatus)


POLICY_HOLDER_RULES = {
    'name': validate_string_field,
    'policy_number': validate_string_field,
    'email': validate_email,
    'phone': validate_string_field,
    'address': validate_string_field,
    'date_of_birth': validate_date,
}

INSURANCE_CLAIM_RULES = {
    'claim_id': validate_string_field,
    'policy_holder_id': validate_positive_id,
    'date_filed': validate_datetime,
    'claim_type': validate_claim_type,
    'status': validate_status,
    'amount': validate_amount,
    'description': validate_optional_text,
}


def _check_fields(data, rules, required=()):
    """Apply ``rules`` to the keys present in ``data``.

    Every failing field is collected so one ValidationError reports all of
    them. Keys without a rule are dropped.
    """
    if not isinstance(data, dict):
        raise ValidationError("No input data provided")
    errors = {}
    cleaned = {}
    for field in required:
        if data.get(field) is None:
            errors[field] = f"Missing required field: {field}"
    for field, rule in rules.items():
        if field not in data or field in errors:
            continue
        try:
            cleaned[field] = rule(data[field], field)
        except ValidationError as e:
            errors.update(e.errors)
    if errors:
        raise ValidationError(errors)
    return cleaned


def validate_create_policy_holder(data):
    cleaned = _check_fields(data, POLICY_HOLDER_RULES, required=list(POLICY_HOLDER_RULES))
    return CreatePolicyHolderInput(**cleaned)


def validate_update_policy_holder(data):
    rules = dict(POLICY_HOLDER_RULES, id=validate_id)
    cleaned = _check_fields(data, rules, required=['id'])
    return UpdatePolicyHolderInput(**cleaned)


def validate_create_insurance_claim(data):
    required = ['claim_id', 'policy_holder_id', 'date_filed', 'claim_type', 'amount']
    cleaned = _check_fields(data, INSURANCE_CLAIM_RULES, required=required)
    if cleaned.get('status') is None:
        cleaned['status'] = ClaimStatus.PENDING
    return CreateInsuranceClaimInput(**cleaned)


def validate_update_insurance_claim(data):
    rules = dict(INSURANCE_CLAIM_RULES, id=validate_id)
    cleaned = _check_fields(data, rules, required=['id'])
    return UpdateInsuranceClaimInput(**cleaned)
