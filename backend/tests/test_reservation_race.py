"""
Concurrent reservation tests.

Runs against a file-backed SQLite database so each thread gets its own
connection: two reservations racing for the same stock must not both pass
the availability check.
"""

import threading

import pytest

from petshop import create_app
from petshop.errors import InsufficientStockError
from petshop.extensions import db
from petshop.models import Company, InventoryReservation, Product, Store, Transaction
from petshop.models.inventory import OwnerRef, ReservationStatus
from petshop.services import reservation_service, stock_service


@pytest.fixture
def race_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(race_app):
    """Product with 5 units on hand and two pending sales competing for it."""
    with race_app.app_context():
        company = Company(name="Patinhas Lda", nif="509999990")
        db.session.add(company)
        db.session.flush()
        store = Store(company_id=company.id, name="Lisboa Centro", code="LIS01")
        db.session.add(store)
        db.session.flush()
        product = Product(
            company_id=company.id, sku="SKU-RACE", name="Flea Collar",
            unit_price_cents=1500, stock_tracked=True, current_stock=0,
        )
        sales = [Transaction(store_id=store.id, created_by="seed") for _ in range(2)]
        db.session.add(product)
        db.session.add_all(sales)
        db.session.commit()
        stock_service.receive_stock(product_id=product.id, quantity=5, performed_by="seed")
        return product.id, [OwnerRef.transaction(s.id) for s in sales]


class TestConcurrentReservations:

    def test_only_one_of_two_racing_reservations_wins(self, race_app, seeded):
        product_id, owners = seeded
        barrier = threading.Barrier(len(owners))
        created, refused, unexpected = [], [], []

        def reserve(owner):
            with race_app.app_context():
                barrier.wait()
                try:
                    reservation = reservation_service.create_reservation(
                        product_id=product_id, quantity=3, owner=owner, performed_by="racer"
                    )
                    created.append(reservation.id)
                except InsufficientStockError as exc:
                    refused.append(exc)
                except Exception as exc:
                    unexpected.append(exc)

        threads = [threading.Thread(target=reserve, args=(owner,)) for owner in owners]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert unexpected == []
        assert len(created) == 1
        assert len(refused) == 1
        assert refused[0].available == 2
        assert refused[0].requested == 3

        with race_app.app_context():
            active = db.session.query(InventoryReservation).filter_by(
                product_id=product_id, status=ReservationStatus.ACTIVE
            ).all()
            assert [r.id for r in active] == created
            assert stock_service.get_available_stock(product_id) == 2
            assert stock_service.load_product(product_id).current_stock == 5
