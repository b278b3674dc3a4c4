import json
from types import SimpleNamespace

import pytest
import stripe
from fastapi import HTTPException
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from wonderland.auth.jwt_handler import IdentityClaims, issue_token
from wonderland.core import config
from wonderland.database import get_db
from wonderland.main import app
from wonderland.models.payment import Payment
from wonderland.routes.enrollment_routes import (
    CommitPaymentRequest,
    PaymentIntentRequest,
    commit_payment,
    create_payment_intent,
    list_payments,
    list_selections,
)


def test_commit_payment_returns_created_with_step_report(db, instructor, student, make_class, make_selection) -> None:
    offering = make_class(price=50.0)
    selection_id = make_selection(student.email, offering).id

    response = commit_payment(
        CommitPaymentRequest(class_id=offering.id, selection_id=selection_id, transaction_id=' pi_1 '),
        student=student,
        db=db,
    )
    body = json.loads(response.body)

    assert response.status_code == 201
    assert body['status'] == 'committed'
    assert [step['status'] for step in body['steps']] == ['applied'] * 5
    assert db.query(Payment).one().transaction_id == 'pi_1'


def test_commit_payment_maps_overbooking_to_conflict(db, instructor, student, make_class, make_selection) -> None:
    offering = make_class(available_seats=0)
    selection_id = make_selection(student.email, offering).id

    response = commit_payment(
        CommitPaymentRequest(class_id=offering.id, selection_id=selection_id, transaction_id='pi_1'),
        student=student,
        db=db,
    )

    assert response.status_code == 409
    assert json.loads(response.body)['detail'] == 'Seat no longer available.'


def _retrieved_intent(amount: int, selection_id, intent_status: str = 'succeeded'):
    def fake_retrieve(transaction_id, **_kwargs):
        return SimpleNamespace(
            id=transaction_id,
            status=intent_status,
            amount=amount,
            metadata={'selection_id': str(selection_id)},
        )

    return fake_retrieve


@pytest.mark.parametrize(
    ('amount', 'intent_selection', 'intent_status'),
    [
        (5000, 'own', 'requires_payment_method'),
        (500, 'own', 'succeeded'),
        (5000, 'other', 'succeeded'),
    ],
)
def test_commit_payment_rejects_unconfirmed_or_mismatched_intent(
    db, instructor, student, make_class, make_selection, monkeypatch: pytest.MonkeyPatch,
    amount, intent_selection, intent_status,
) -> None:
    offering = make_class(price=50.0)
    selection_id = make_selection(student.email, offering).id
    intent_selection_id = selection_id if intent_selection == 'own' else selection_id + 100
    monkeypatch.setattr(config, 'PAYMENT_VERIFY_INTENTS', True)
    monkeypatch.setattr(config, 'PAYMENT_SECRET_KEY', 'sk_test')
    monkeypatch.setattr(stripe.PaymentIntent, 'retrieve', _retrieved_intent(amount, intent_selection_id, intent_status))

    with pytest.raises(HTTPException) as exception_info:
        commit_payment(
            CommitPaymentRequest(class_id=offering.id, selection_id=selection_id, transaction_id='pi_1'),
            student=student,
            db=db,
        )

    assert exception_info.value.status_code == 402
    assert db.query(Payment).count() == 0


def test_commit_payment_accepts_intent_matching_selection(
    db, instructor, student, make_class, make_selection, monkeypatch: pytest.MonkeyPatch,
) -> None:
    offering = make_class(price=50.0)
    selection_id = make_selection(student.email, offering).id
    monkeypatch.setattr(config, 'PAYMENT_VERIFY_INTENTS', True)
    monkeypatch.setattr(config, 'PAYMENT_SECRET_KEY', 'sk_test')
    monkeypatch.setattr(stripe.PaymentIntent, 'retrieve', _retrieved_intent(5000, selection_id))

    response = commit_payment(
        CommitPaymentRequest(class_id=offering.id, selection_id=selection_id, transaction_id='pi_1'),
        student=student,
        db=db,
    )

    assert response.status_code == 201


def test_commit_payment_reuses_transaction_only_once(
    db, instructor, student, make_class, make_selection,
) -> None:
    cheap = make_class(name='Cheap', price=5.0)
    pricey = make_class(name='Pricey', price=500.0)
    cheap_selection = make_selection(student.email, cheap).id
    pricey_selection = make_selection(student.email, pricey).id

    first = commit_payment(
        CommitPaymentRequest(class_id=cheap.id, selection_id=cheap_selection, transaction_id='pi_cheap'),
        student=student,
        db=db,
    )
    second = commit_payment(
        CommitPaymentRequest(class_id=pricey.id, selection_id=pricey_selection, transaction_id='pi_cheap'),
        student=student,
        db=db,
    )

    assert first.status_code == 201
    assert second.status_code == 409
    assert json.loads(second.body)['detail'] == 'Payment already used for another selection.'
    assert db.query(Payment).count() == 1
    db.refresh(pricey)
    assert pricey.enrolled == 0


def test_commit_payment_maps_store_outage_to_service_unavailable(
    db, student, monkeypatch: pytest.MonkeyPatch,
) -> None:
    def unavailable(*_args, **_kwargs):
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    monkeypatch.setattr(config, 'PAYMENT_VERIFY_INTENTS', False)
    monkeypatch.setattr(db, 'query', unavailable)

    response = commit_payment(
        CommitPaymentRequest(class_id=1, selection_id=1, transaction_id='pi_1'),
        student=student,
        db=db,
    )

    assert response.status_code == 503
    assert json.loads(response.body)['status'] == 'failed'


def test_commit_payment_maps_store_outage_during_verification(
    db, student, monkeypatch: pytest.MonkeyPatch,
) -> None:
    def unavailable(*_args, **_kwargs):
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    monkeypatch.setattr(config, 'PAYMENT_VERIFY_INTENTS', True)
    monkeypatch.setattr(db, 'query', unavailable)

    with pytest.raises(HTTPException) as exception_info:
        commit_payment(
            CommitPaymentRequest(class_id=1, selection_id=1, transaction_id='pi_1'),
            student=student,
            db=db,
        )

    assert exception_info.value.status_code == 503


def test_create_payment_intent_charges_selection_price(
    db, student, make_class, make_selection, monkeypatch: pytest.MonkeyPatch,
) -> None:
    offering = make_class(price=49.99)
    selection_id = make_selection(student.email, offering).id
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id='pi_test', client_secret='pi_test_secret')

    monkeypatch.setattr(config, 'PAYMENT_SECRET_KEY', 'sk_test')
    monkeypatch.setattr(stripe.PaymentIntent, 'create', fake_create)

    response = create_payment_intent(PaymentIntentRequest(selection_id=selection_id), student=student, db=db)

    assert response.client_secret == 'pi_test_secret'
    assert captured['amount'] == 4999
    assert captured['currency'] == 'usd'
    assert captured['payment_method_types'] == ['card']
    assert captured['metadata'] == {'selection_id': str(selection_id)}


def test_create_payment_intent_maps_provider_errors(
    db, student, make_class, make_selection, monkeypatch: pytest.MonkeyPatch,
) -> None:
    offering = make_class()
    selection_id = make_selection(student.email, offering).id

    def failing_create(**_kwargs):
        raise stripe.APIConnectionError('network down')

    monkeypatch.setattr(config, 'PAYMENT_SECRET_KEY', 'sk_test')
    monkeypatch.setattr(stripe.PaymentIntent, 'create', failing_create)

    with pytest.raises(HTTPException) as exception_info:
        create_payment_intent(PaymentIntentRequest(selection_id=selection_id), student=student, db=db)

    assert exception_info.value.status_code == 502


def test_payment_routes_report_missing_provider_key(
    db, instructor, student, make_class, make_selection, monkeypatch: pytest.MonkeyPatch,
) -> None:
    offering = make_class()
    selection_id = make_selection(student.email, offering).id
    monkeypatch.setattr(config, 'PAYMENT_SECRET_KEY', '')
    monkeypatch.setattr(config, 'PAYMENT_VERIFY_INTENTS', True)

    with pytest.raises(HTTPException) as intent_error:
        create_payment_intent(PaymentIntentRequest(selection_id=selection_id), student=student, db=db)
    with pytest.raises(HTTPException) as commit_error:
        commit_payment(
            CommitPaymentRequest(class_id=offering.id, selection_id=selection_id, transaction_id='pi_1'),
            student=student,
            db=db,
        )

    assert intent_error.value.status_code == 502
    assert commit_error.value.status_code == 502
    assert db.query(Payment).count() == 0


@pytest.mark.parametrize('listing', [list_selections, list_payments])
def test_listings_forbid_other_identities(db, listing) -> None:
    with pytest.raises(HTTPException) as exception_info:
        listing(email='b@example.com', claims=IdentityClaims(email='a@example.com'), db=db)

    assert exception_info.value.status_code == 403


@pytest.mark.parametrize('listing', [list_selections, list_payments])
def test_listings_return_empty_without_email(db, listing) -> None:
    assert listing(email='  ', claims=IdentityClaims(email='a@example.com'), db=db) == []


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _auth_header(email: str) -> dict:
    return {'Authorization': f'Bearer {issue_token(IdentityClaims(email=email))}'}


def test_select_pay_and_commit_over_http(client, instructor, student, make_class) -> None:
    offering = make_class(price=50.0, available_seats=2)
    headers = _auth_header(student.email)

    selected = client.post('/enrollment/selections', json={'class_id': offering.id}, headers=headers)
    assert selected.status_code == 201
    selection_id = selected.json()['id']

    committed = client.post(
        '/enrollment/payments',
        json={'class_id': offering.id, 'selection_id': selection_id, 'transaction_id': 'pi_1'},
        headers=headers,
    )
    retried = client.post(
        '/enrollment/payments',
        json={'class_id': offering.id, 'selection_id': selection_id, 'transaction_id': 'pi_1'},
        headers=headers,
    )

    assert committed.status_code == 201
    assert retried.status_code == 200
    assert retried.json()['status'] == 'replayed'

    assert client.get('/enrollment/selections', params={'email': student.email}, headers=headers).json() == []
    paid = client.get('/enrollment/payments', params={'email': student.email}, headers=headers).json()
    assert [(payment['class_id'], payment['amount']) for payment in paid] == [(offering.id, 50.0)]

    classes = client.get('/classes').json()
    assert (classes[0]['enrolled'], classes[0]['available_seats']) == (1, 1)
    coach = client.get('/users/instructors').json()[0]
    assert coach['students'] == 1


def test_mutating_routes_require_token_and_role(client, instructor, make_class) -> None:
    offering = make_class()

    assert client.post('/enrollment/selections', json={'class_id': offering.id}).status_code == 401
    assert client.get('/users', headers=_auth_header(instructor.email)).status_code == 403
    forbidden = client.post(
        '/enrollment/selections',
        json={'class_id': offering.id},
        headers=_auth_header(instructor.email),
    )
    assert forbidden.status_code == 403


def test_is_instructor_over_http_does_not_leak_other_roles(client, instructor, student) -> None:
    response = client.get(f'/users/is-instructor/{instructor.email}', headers=_auth_header(student.email))

    assert response.status_code == 200
    assert response.json() == {'instructor': False}
