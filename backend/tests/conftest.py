"""
Pytest fixtures for chifa_pos backend tests.

Provides test database setup, two isolated pharmacies (tenants), resolved
actors with bearer tokens, and a drawer with an open session.
"""

import pytest

from chifa_pos import create_app
from chifa_pos.extensions import db
from chifa_pos.models import Pharmacy
from chifa_pos.services import cash_session_service, identity_service
from chifa_pos.services.identity_service import ActorContext


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def pharmacy_a(db_session):
    """Create Pharmacy A (first tenant)."""
    pharmacy = Pharmacy(name="Pharmacie El Amel", code="AMEL", is_active=True)
    db_session.add(pharmacy)
    db_session.commit()
    return pharmacy


@pytest.fixture(scope='function')
def pharmacy_b(db_session):
    """Create Pharmacy B (second tenant)."""
    pharmacy = Pharmacy(name="Pharmacie Ibn Sina", code="SINA", is_active=True)
    db_session.add(pharmacy)
    db_session.commit()
    return pharmacy


@pytest.fixture(scope='function')
def actor_a(pharmacy_a):
    return ActorContext(
        pharmacy_id=pharmacy_a.id,
        actor_id="u-amel-1",
        actor_display_name="Karim B.",
        is_employee=True,
    )


@pytest.fixture(scope='function')
def actor_b(pharmacy_b):
    return ActorContext(
        pharmacy_id=pharmacy_b.id,
        actor_id="u-sina-1",
        actor_display_name="Nadia H.",
        is_employee=True,
    )


@pytest.fixture(scope='function')
def token_a(actor_a):
    """Bearer token resolving to actor_a."""
    _, token = identity_service.issue_token(
        pharmacy_id=actor_a.pharmacy_id,
        actor_id=actor_a.actor_id,
        actor_display_name=actor_a.actor_display_name,
        is_employee=actor_a.is_employee,
    )
    return token


@pytest.fixture(scope='function')
def token_b(actor_b):
    """Bearer token resolving to actor_b."""
    _, token = identity_service.issue_token(
        pharmacy_id=actor_b.pharmacy_id,
        actor_id=actor_b.actor_id,
        actor_display_name=actor_b.actor_display_name,
        is_employee=actor_b.is_employee,
    )
    return token


@pytest.fixture(scope='function')
def drawer_a(pharmacy_a):
    """Create a cash drawer in Pharmacy A."""
    return cash_session_service.create_drawer(pharmacy_a.id, "CAISSE-1", "Comptoir principal")


@pytest.fixture(scope='function')
def drawer_b(pharmacy_b):
    """Create a cash drawer in Pharmacy B."""
    return cash_session_service.create_drawer(pharmacy_b.id, "CAISSE-1", "Comptoir")


@pytest.fixture(scope='function')
def session_a(actor_a, drawer_a):
    """Open session on drawer_a with a 5000 centimes float."""
    return cash_session_service.open_session(
        actor_a.pharmacy_id, actor_a, drawer_a.id, opening_balance_cents=5000
    )


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def invoice_payload(**overrides) -> dict:
    """Insured claim for two boxes priced above the reference tariff."""
    payload = {
        "insured_number": "1234567890",
        "insured_name": "Benali Ahmed",
        "insurance_type": "CNAS",
        "is_chronic": False,
        "prescriber_name": "Dr. Mansouri",
        "items": [
            {
                "product_id": "P-AMOX",
                "product_name": "Amoxicilline 1g",
                "quantity": 2,
                "unit_price_cents": 10000,
                "tarif_reference_cents": 8000,
                "reimbursement_rate": 80,
            }
        ],
    }
    payload.update(overrides)
    return payload
