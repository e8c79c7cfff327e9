"""
Pytest fixtures for the petshop backend tests.

Provides test database setup, a company/store with staff users, catalog
fixtures and the test client.
"""

import pytest

from petshop import create_app
from petshop.extensions import db
from petshop.models import Company, Customer, Pet, Product, Service, ServiceConsumedItem, Store, User
from petshop.models.auth import ROLE_ACCOUNTANT, ROLE_MANAGER, ROLE_OWNER, ROLE_STAFF
from petshop.services import stock_service
from petshop.services.auth_service import hash_password

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
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
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def company(db_session):
    company = Company(name="Patinhas Lda", nif="509999990", address="Rua das Flores 1, Lisboa")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def store(db_session, company):
    store = Store(company_id=company.id, name="Lisboa Centro", code="LIS01")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    """Store in a second company, for tenant isolation checks."""
    other = Company(name="Outra Loja SA", nif="508888880")
    db_session.add(other)
    db_session.flush()
    store = Store(company_id=other.id, name="Porto", code="POR01")
    db_session.add(store)
    db_session.commit()
    return store


def _make_user(db_session, company, store, username, roles):
    user = User(
        company_id=company.id,
        store_id=store.id,
        username=username,
        email=f"{username}@patinhas.pt",
        password_hash=hash_password(PASSWORD),
        roles=",".join(roles),
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session, company, store):
    return _make_user(db_session, company, store, "owner", [ROLE_OWNER])


@pytest.fixture(scope='function')
def staff(db_session, company, store):
    return _make_user(db_session, company, store, "groomer", [ROLE_STAFF])


@pytest.fixture(scope='function')
def second_staff(db_session, company, store):
    return _make_user(db_session, company, store, "vet", [ROLE_STAFF])


@pytest.fixture(scope='function')
def manager(db_session, company, store):
    return _make_user(db_session, company, store, "manager", [ROLE_MANAGER])


@pytest.fixture(scope='function')
def accountant(db_session, company, store):
    return _make_user(db_session, company, store, "accountant", [ROLE_ACCOUNTANT])


@pytest.fixture(scope='function')
def make_product(db_session, company):
    """Factory: product with stock booked in through a receipt movement."""
    counter = {"n": 0}

    def _make(stock=0, *, price=1000, vat=2300, tracked=True, name=None, reorder_threshold=0):
        counter["n"] += 1
        product = Product(
            company_id=company.id,
            sku=f"SKU-{counter['n']:03d}",
            name=name or f"Product {counter['n']}",
            unit_price_cents=price,
            vat_rate_bps=vat,
            stock_tracked=tracked,
            reorder_threshold=reorder_threshold,
            current_stock=0,
        )
        db_session.add(product)
        db_session.commit()
        if stock:
            stock_service.receive_stock(product_id=product.id, quantity=stock, performed_by="fixture")
        return product

    return _make


@pytest.fixture(scope='function')
def shampoo(make_product):
    return make_product(10, name="Hypoallergenic Shampoo")


@pytest.fixture(scope='function')
def make_service(db_session, company):
    def _make(name, *, price=2500, duration=60, consumes=None):
        service = Service(
            company_id=company.id,
            name=name,
            duration_minutes=duration,
            price_cents=price,
            vat_rate_bps=2300,
            consumes_inventory=bool(consumes),
        )
        for product, quantity in (consumes or []):
            service.consumed_items.append(ServiceConsumedItem(product_id=product.id, quantity=quantity))
        db_session.add(service)
        db_session.commit()
        return service

    return _make


@pytest.fixture(scope='function')
def grooming(make_service, shampoo):
    """Grooming uses 2 units of shampoo per session."""
    return make_service("Full Grooming", consumes=[(shampoo, 2)])


@pytest.fixture(scope='function')
def customer(db_session, company):
    customer = Customer(company_id=company.id, full_name="Ana Silva", email="ana@example.pt", phone="912345678")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def pet(db_session, customer):
    pet = Pet(customer_id=customer.id, name="Bolinhas", species="dog", breed="Beagle")
    db_session.add(pet)
    db_session.commit()
    return pet


@pytest.fixture(scope='function')
def book(store, customer, pet, staff):
    """Factory around create_appointment with sensible defaults."""
    from petshop.services import appointment_service

    def _book(services, *, start="2030-03-04T10:00:00Z", end="2030-03-04T11:00:00Z", staff_user=None, pet_id=None):
        return appointment_service.create_appointment(
            store_id=store.id,
            customer_id=customer.id,
            pet_id=pet_id or pet.id,
            staff_id=(staff_user or staff).id,
            start_at=start,
            end_at=end,
            service_lines=[{"service_id": s.id, "quantity": 1} for s in services],
            performed_by=staff.id,
        )

    return _book


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def owner_headers(client, owner):
    return auth_headers(get_auth_token(client, owner.username))


@pytest.fixture(scope='function')
def staff_headers(client, staff):
    return auth_headers(get_auth_token(client, staff.username))


@pytest.fixture(scope='function')
def accountant_headers(client, accountant):
    return auth_headers(get_auth_token(client, accountant.username))
