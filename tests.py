import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from app import create_app
from config import TestingConfig
from entities import ClaimStatus, ClaimType, UNSET, UpdateInsuranceClaimInput
from errors import (
    DatabaseError,
    DuplicateKeyError,
    ForeignKeyViolationError,
    ResourceNotFoundError,
    ValidationError,
)
from models import InsuranceClaim, PolicyHolder, db
from store import translate_integrity_error


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def manager(app):
    return app.extensions['claims_manager']


@pytest.fixture
def client(app):
    return app.test_client()


def policy_holder_data(**overrides):
    data = {
        'name': 'John Doe',
        'policy_number': 'POL-1',
        'email': 'j@x.com',
        'phone': '555',
        'address': '1 Main St',
        'date_of_birth': '1980-01-01',
    }
    data.update(overrides)
    return data


def claim_data(policy_holder_id, **overrides):
    data = {
        'claim_id': 'CLM-1',
        'policy_holder_id': policy_holder_id,
        'date_filed': '2024-01-15',
        'claim_type': 'AUTO',
        'amount': 5000.50,
    }
    data.update(overrides)
    return data


# Policy holders

def test_create_policy_holder(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    assert ph.id == 1
    assert ph.name == 'John Doe'
    assert ph.policy_number == 'POL-1'
    assert ph.email == 'j@x.com'
    assert ph.phone == '555'
    assert ph.address == '1 Main St'
    assert ph.date_of_birth == date(1980, 1, 1)
    assert isinstance(ph.created_at, datetime)
    assert ph.created_at == ph.updated_at


def test_create_policy_holder_is_persisted(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    stored = db.session.get(PolicyHolder, ph.id)
    assert stored.policy_number == 'POL-1'
    assert stored.date_of_birth == date(1980, 1, 1)


def test_create_policy_holder_reports_every_bad_field(manager):
    with pytest.raises(ValidationError) as exc_info:
        manager.create_policy_holder(policy_holder_data(name='', email='not-an-email', phone=''))
    assert exc_info.value.fields == ['email', 'name', 'phone']
    assert manager.get_policy_holders() == []


def test_create_policy_holder_missing_fields(manager):
    with pytest.raises(ValidationError) as exc_info:
        manager.create_policy_holder({'name': 'John Doe'})
    assert set(exc_info.value.fields) == {'policy_number', 'email', 'phone', 'address', 'date_of_birth'}


def test_create_policy_holder_bad_date(manager):
    with pytest.raises(ValidationError) as exc_info:
        manager.create_policy_holder(policy_holder_data(date_of_birth='01/01/1980'))
    assert exc_info.value.fields == ['date_of_birth']


def test_duplicate_policy_number(manager):
    first = manager.create_policy_holder(policy_holder_data())
    with pytest.raises(DuplicateKeyError) as exc_info:
        manager.create_policy_holder(policy_holder_data(name='Jane Doe'))
    assert exc_info.value.field == 'policy_number'
    holders = manager.get_policy_holders()
    assert [ph.id for ph in holders] == [first.id]


def test_get_policy_holders_ordered_by_name(manager):
    for name, number in [('Charlie', 'POL-3'), ('Alice', 'POL-1'), ('Bob', 'POL-2')]:
        manager.create_policy_holder(policy_holder_data(name=name, policy_number=number))
    assert [ph.name for ph in manager.get_policy_holders()] == ['Alice', 'Bob', 'Charlie']


def test_get_policy_holders_empty(manager):
    assert manager.get_policy_holders() == []


def test_get_policy_holder(manager):
    manager.create_policy_holder(policy_holder_data())
    other = manager.create_policy_holder(policy_holder_data(name='Jane', policy_number='POL-2'))
    found = manager.get_policy_holder(other.id)
    assert found.name == 'Jane'
    assert manager.get_policy_holder(999) is None


def test_get_policy_holder_rejects_non_positive_id(manager):
    with pytest.raises(ValidationError):
        manager.get_policy_holder(0)
    with pytest.raises(ValidationError):
        manager.get_policy_holder(True)


def test_update_policy_holder_only_supplied_fields(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    updated = manager.update_policy_holder({'id': ph.id, 'name': 'Johnny Doe', 'date_of_birth': '1981-02-03'})
    assert updated.name == 'Johnny Doe'
    assert updated.date_of_birth == date(1981, 2, 3)
    assert updated.policy_number == 'POL-1'
    assert updated.email == 'j@x.com'


def test_update_policy_holder_without_changes_bumps_updated_at(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    before = ph.updated_at
    created = ph.created_at
    updated = manager.update_policy_holder({'id': ph.id})
    assert updated.updated_at > before
    assert updated.created_at == created
    assert updated.name == 'John Doe'


def test_update_missing_policy_holder_returns_none(manager):
    assert manager.update_policy_holder({'id': 42, 'name': 'Nobody'}) is None


def test_update_policy_holder_validates_present_fields(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    with pytest.raises(ValidationError) as exc_info:
        manager.update_policy_holder({'id': ph.id, 'email': 'broken', 'address': ''})
    assert exc_info.value.fields == ['address', 'email']
    assert manager.get_policy_holder(ph.id).email == 'j@x.com'


def test_update_policy_holder_duplicate_policy_number(manager):
    manager.create_policy_holder(policy_holder_data())
    other = manager.create_policy_holder(policy_holder_data(name='Jane', policy_number='POL-2'))
    with pytest.raises(DuplicateKeyError) as exc_info:
        manager.update_policy_holder({'id': other.id, 'policy_number': 'POL-1'})
    assert exc_info.value.field == 'policy_number'
    assert manager.get_policy_holder(other.id).policy_number == 'POL-2'


# Insurance claims

def test_create_insurance_claim_defaults(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id))
    assert claim.claim_id == 'CLM-1'
    assert claim.policy_holder_id == ph.id
    assert claim.date_filed == datetime(2024, 1, 15)
    assert claim.claim_type == ClaimType.AUTO
    assert claim.status == ClaimStatus.PENDING
    assert claim.amount == Decimal('5000.50')
    assert claim.description is None
    assert claim.created_at == claim.updated_at


def test_create_insurance_claim_with_all_fields(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(
        ph.id,
        claim_type='HOME',
        status='INVESTIGATING',
        description='Kitchen fire',
        date_filed='2024-03-01T10:30:00',
    ))
    assert claim.claim_type == ClaimType.HOME
    assert claim.status == ClaimStatus.INVESTIGATING
    assert claim.description == 'Kitchen fire'
    assert claim.date_filed == datetime(2024, 3, 1, 10, 30)


@pytest.mark.parametrize('amount', ['999.99', 999.99, '0.01', '1234567890.12', 42])
def test_amount_round_trip_is_exact(manager, amount):
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id, amount=amount))
    db.session.expire_all()
    stored = db.session.get(InsuranceClaim, claim.id)
    assert stored.amount == Decimal(str(amount))


def test_create_claim_unknown_policy_holder(manager):
    with pytest.raises(ResourceNotFoundError) as exc_info:
        manager.create_insurance_claim(claim_data(99))
    assert exc_info.value.field == 'policy_holder_id'
    assert manager.get_insurance_claims() == []


def test_create_claim_duplicate_claim_id(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    first = manager.create_insurance_claim(claim_data(ph.id))
    with pytest.raises(DuplicateKeyError) as exc_info:
        manager.create_insurance_claim(claim_data(ph.id, amount=10))
    assert exc_info.value.field == 'claim_id'
    assert manager.get_insurance_claim(first.id).amount == Decimal('5000.50')


@pytest.mark.parametrize('field, value', [
    ('amount', 0),
    ('amount', -10),
    ('amount', '0.004'),
    ('amount', 'lots'),
    ('amount', True),
    ('amount', 'Infinity'),
    ('claim_type', 'BOAT'),
    ('claim_type', 'auto'),
    ('status', 'CLOSED'),
    ('claim_id', ''),
    ('policy_holder_id', 0),
    ('policy_holder_id', -3),
    ('policy_holder_id', '1'),
    ('policy_holder_id', 1.5),
    ('policy_holder_id', True),
    ('date_filed', 'yesterday'),
    ('description', 17),
])
def test_create_claim_rejects_invalid_field(manager, field, value):
    ph = manager.create_policy_holder(policy_holder_data())
    data = claim_data(ph.id)
    data[field] = value
    with pytest.raises(ValidationError) as exc_info:
        manager.create_insurance_claim(data)
    assert exc_info.value.fields == [field]
    assert manager.get_insurance_claims() == []


@pytest.mark.parametrize('amount, expected', [
    ('12.345', Decimal('12.35')),
    (100.555, Decimal('100.56')),
    (0.1 + 0.2, Decimal('0.30')),
    ('0.005', Decimal('0.01')),
    ('7.004', Decimal('7.00')),
])
def test_amount_is_rounded_to_cents(manager, amount, expected):
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id, amount=amount))
    db.session.expire_all()
    assert db.session.get(InsuranceClaim, claim.id).amount == expected


def test_timestamps_are_naive_utc(manager):
    before = datetime.now(timezone.utc).replace(tzinfo=None)
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id, date_filed='2024-01-15T10:00:00+02:00'))
    after = datetime.now(timezone.utc).replace(tzinfo=None)
    assert claim.date_filed == datetime(2024, 1, 15, 8, 0)
    assert claim.created_at.tzinfo is None
    assert before <= claim.created_at <= after
    updated = manager.update_policy_holder({'id': ph.id})
    assert before <= updated.updated_at <= datetime.now(timezone.utc).replace(tzinfo=None)


def test_get_insurance_claims_newest_first_with_policy_holder(manager):
    alice = manager.create_policy_holder(policy_holder_data(name='Alice', policy_number='POL-A'))
    bob = manager.create_policy_holder(policy_holder_data(name='Bob', policy_number='POL-B'))
    manager.create_insurance_claim(claim_data(alice.id, claim_id='CLM-OLD', date_filed='2023-05-01'))
    manager.create_insurance_claim(claim_data(bob.id, claim_id='CLM-NEW', date_filed='2024-06-01'))
    manager.create_insurance_claim(claim_data(alice.id, claim_id='CLM-MID', date_filed='2024-01-01'))

    claims = manager.get_insurance_claims()
    assert [c.claim_id for c in claims] == ['CLM-NEW', 'CLM-MID', 'CLM-OLD']
    assert [c.policy_holder.name for c in claims] == ['Bob', 'Alice', 'Alice']


def test_get_insurance_claims_empty(manager):
    assert manager.get_insurance_claims() == []


def test_get_insurance_claim(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id))
    found = manager.get_insurance_claim(claim.id)
    assert found.claim_id == 'CLM-1'
    assert found.policy_holder.name == 'John Doe'
    composite = found.to_dict(include_policy_holder=True)
    assert composite['policy_holder']['policy_number'] == 'POL-1'
    assert manager.get_insurance_claim(12345) is None


def test_get_claims_by_policy_holder(manager):
    alice = manager.create_policy_holder(policy_holder_data(name='Alice', policy_number='POL-A'))
    bob = manager.create_policy_holder(policy_holder_data(name='Bob', policy_number='POL-B'))
    manager.create_insurance_claim(claim_data(alice.id, claim_id='CLM-1', date_filed='2024-01-01'))
    manager.create_insurance_claim(claim_data(alice.id, claim_id='CLM-2', date_filed='2024-02-01'))
    manager.create_insurance_claim(claim_data(bob.id, claim_id='CLM-3', date_filed='2024-03-01'))

    claims = manager.get_claims_by_policy_holder(alice.id)
    assert [c.claim_id for c in claims] == ['CLM-2', 'CLM-1']
    assert manager.get_claims_by_policy_holder(999) == []


def test_update_insurance_claim_status(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id))
    updated = manager.update_insurance_claim({'id': claim.id, 'status': 'APPROVED'})
    assert updated.status == ClaimStatus.APPROVED
    assert updated.amount == Decimal('5000.50')
    assert updated.claim_id == 'CLM-1'


def test_update_insurance_claim_multiple_fields(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id, description='Fender bender'))
    updated = manager.update_insurance_claim({
        'id': claim.id,
        'status': 'INVESTIGATING',
        'amount': 6200.75,
        'claim_type': 'PROPERTY',
    })
    assert updated.status == ClaimStatus.INVESTIGATING
    assert updated.amount == Decimal('6200.75')
    assert updated.claim_type == ClaimType.PROPERTY
    assert updated.description == 'Fender bender'


def test_update_insurance_claim_description_null_vs_absent(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id, description='Hail damage'))
    unchanged = manager.update_insurance_claim({'id': claim.id, 'status': 'REJECTED'})
    assert unchanged.description == 'Hail damage'
    cleared = manager.update_insurance_claim({'id': claim.id, 'description': None})
    assert cleared.description is None


def test_update_insurance_claim_without_changes_bumps_updated_at(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id))
    before = claim.updated_at
    updated = manager.update_insurance_claim({'id': claim.id})
    assert updated.updated_at > before
    assert updated.status == ClaimStatus.PENDING
    assert updated.amount == Decimal('5000.50')


def test_update_missing_insurance_claim_returns_none(manager):
    assert manager.update_insurance_claim({'id': 404, 'status': 'APPROVED'}) is None


def test_update_insurance_claim_dangling_policy_holder(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id))
    with pytest.raises(ForeignKeyViolationError) as exc_info:
        manager.update_insurance_claim({'id': claim.id, 'policy_holder_id': 999})
    assert exc_info.value.field == 'policy_holder_id'
    assert manager.get_insurance_claim(claim.id).policy_holder_id == ph.id


def test_update_insurance_claim_moves_to_other_policy_holder(manager):
    alice = manager.create_policy_holder(policy_holder_data(name='Alice', policy_number='POL-A'))
    bob = manager.create_policy_holder(policy_holder_data(name='Bob', policy_number='POL-B'))
    claim = manager.create_insurance_claim(claim_data(alice.id))
    manager.update_insurance_claim({'id': claim.id, 'policy_holder_id': bob.id})
    assert [c.claim_id for c in manager.get_claims_by_policy_holder(bob.id)] == ['CLM-1']
    assert manager.get_claims_by_policy_holder(alice.id) == []


def test_update_insurance_claim_duplicate_claim_id(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    manager.create_insurance_claim(claim_data(ph.id, claim_id='CLM-1'))
    second = manager.create_insurance_claim(claim_data(ph.id, claim_id='CLM-2'))
    with pytest.raises(DuplicateKeyError):
        manager.update_insurance_claim({'id': second.id, 'claim_id': 'CLM-1'})
    assert manager.get_insurance_claim(second.id).claim_id == 'CLM-2'


def test_update_insurance_claim_rejects_bad_amount(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id))
    with pytest.raises(ValidationError) as exc_info:
        manager.update_insurance_claim({'id': claim.id, 'amount': -1})
    assert exc_info.value.fields == ['amount']


def test_settled_claim_can_be_reopened(manager):
    # status changes are deliberately unrestricted, including SETTLED -> PENDING
    ph = manager.create_policy_holder(policy_holder_data())
    claim = manager.create_insurance_claim(claim_data(ph.id, status='SETTLED'))
    reopened = manager.update_insurance_claim({'id': claim.id, 'status': 'PENDING'})
    assert reopened.status == ClaimStatus.PENDING


def test_scenario_end_to_end(manager):
    ph = manager.create_policy_holder(policy_holder_data())
    assert ph.id == 1
    claim = manager.create_insurance_claim(claim_data(1))
    assert claim.status == ClaimStatus.PENDING
    assert claim.description is None

    updated = manager.update_insurance_claim({'id': claim.id, 'status': 'APPROVED'})
    assert updated.status == ClaimStatus.APPROVED
    assert updated.amount == Decimal('5000.50')
    assert updated.claim_id == 'CLM-1'

    found = manager.get_insurance_claim(claim.id)
    assert found.policy_holder.name == 'John Doe'


# Store

def test_store_enforces_foreign_key(manager):
    store = manager.store
    orphan = InsuranceClaim(
        claim_id='CLM-X',
        policy_holder_id=77,
        date_filed=datetime(2024, 1, 1),
        claim_type=ClaimType.LIFE,
        amount=Decimal('10.00'),
    )
    with pytest.raises(ForeignKeyViolationError):
        with store.transaction():
            store.insert(orphan)
    assert manager.get_insurance_claims() == []


def test_translate_postgres_unique_violation():
    class PgError(Exception):
        pgcode = '23505'

    orig = PgError('duplicate key value violates unique constraint "uq_insurance_claims_claim_id"\n'
                   'DETAIL:  Key (claim_id)=(CLM-1) already exists.')
    error = translate_integrity_error(IntegrityError('INSERT', {}, orig))
    assert isinstance(error, DuplicateKeyError)
    assert error.field == 'claim_id'


def test_translate_unclassified_integrity_error():
    orig = Exception('NOT NULL constraint failed: insurance_claims.amount')
    error = translate_integrity_error(IntegrityError('INSERT', {}, orig))
    assert type(error) is DatabaseError


def test_update_input_tracks_supplied_fields():
    payload = UpdateInsuranceClaimInput(id=3, status=ClaimStatus.SETTLED, description=None)
    assert payload.amount is UNSET
    assert payload.changes() == {'status': ClaimStatus.SETTLED, 'description': None}


# HTTP procedures

def test_http_create_and_fetch_policy_holder(client):
    response = client.post('/policyholders', json=policy_holder_data())
    assert response.status_code == 201
    body = response.get_json()
    assert body['id'] == 1
    assert body['date_of_birth'] == '1980-01-01'

    response = client.get('/policyholders/1')
    assert response.get_json()['name'] == 'John Doe'


def test_http_missing_records_are_null(client):
    assert client.get('/policyholders/5').get_json() is None
    assert client.get('/claims/5').get_json() is None
    response = client.put('/claims/5', json={'status': 'APPROVED'})
    assert response.status_code == 200
    assert response.get_json() is None
    assert client.put('/policyholders/5', json={'name': 'X'}).get_json() is None


def test_http_validation_error(client):
    response = client.post('/policyholders', json=policy_holder_data(email='nope'))
    assert response.status_code == 400
    body = response.get_json()
    assert body['error'] == 'Validation error'
    assert 'email' in body['fields']


def test_http_empty_body_is_rejected_on_create(client):
    response = client.post('/claims', data='not json', content_type='text/plain')
    assert response.status_code == 400


def test_http_duplicate_and_not_found(client):
    client.post('/policyholders', json=policy_holder_data())
    response = client.post('/policyholders', json=policy_holder_data())
    assert response.status_code == 409
    assert response.get_json()['field'] == 'policy_number'

    response = client.post('/claims', json=claim_data(99))
    assert response.status_code == 404
    assert response.get_json()['field'] == 'policy_holder_id'


def test_http_claim_flow(client):
    client.post('/policyholders', json=policy_holder_data())
    response = client.post('/claims', json=claim_data(1, amount=999.99))
    assert response.status_code == 201
    created = response.get_json()
    assert created['amount'] == 999.99
    assert created['status'] == 'PENDING'
    assert created['description'] is None
    assert created['date_filed'] == '2024-01-15T00:00:00'

    response = client.put(f"/claims/{created['id']}", json={'status': 'APPROVED'})
    updated = response.get_json()
    assert updated['status'] == 'APPROVED'
    assert updated['amount'] == 999.99
    assert 'policy_holder' not in updated

    listing = client.get('/claims').get_json()
    assert listing[0]['policy_holder']['name'] == 'John Doe'
    one = client.get(f"/claims/{created['id']}").get_json()
    assert one['policy_holder']['policy_number'] == 'POL-1'

    by_holder = client.get('/policyholders/1/claims').get_json()
    assert [c['claim_id'] for c in by_holder] == ['CLM-1']


def test_http_update_without_body_is_a_touch(client):
    client.post('/policyholders', json=policy_holder_data())
    before = client.get('/policyholders/1').get_json()
    response = client.put('/policyholders/1')
    after = response.get_json()
    assert response.status_code == 200
    assert after['name'] == before['name']
    assert after['updated_at'] > before['updated_at']


def test_http_foreign_key_violation(client):
    client.post('/policyholders', json=policy_holder_data())
    claim = client.post('/claims', json=claim_data(1)).get_json()
    response = client.put(f"/claims/{claim['id']}", json={'policy_holder_id': 50})
    assert response.status_code == 409
    assert response.get_json()['error'] == 'Foreign key violation'


def test_http_healthcheck_and_unknown_route(client):
    body = client.get('/healthcheck').get_json()
    assert body['status'] == 'ok'
    assert client.get('/nowhere').status_code == 404
    assert client.get('/').status_code == 404
