# Overview: Customers and their pets.

from __future__ import annotations

from sqlalchemy import or_

from ..errors import NotFoundError
from ..extensions import db
from ..models import Company, Customer, Pet
from ..validation import CUSTOMER_POLICY, PET_POLICY, validate_payload
from .concurrency import run_in_transaction


def create_customer(*, company_id: str, data: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=data, policy=CUSTOMER_POLICY, partial=False)

    def _op():
        company = db.session.query(Company).filter_by(id=company_id).first()
        if company is None:
            raise NotFoundError("Company not found", details={"company_id": company_id})
        customer = Customer(company_id=company_id, **patch)
        db.session.add(customer)
        db.session.flush()
        return customer

    return run_in_transaction(_op)


def update_customer(customer_id: str, *, data: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=data, policy=CUSTOMER_POLICY, partial=True)

    def _op():
        customer = get_customer(customer_id)
        for key, value in patch.items():
            setattr(customer, key, value)
        return customer

    return run_in_transaction(_op)


def get_customer(customer_id: str) -> Customer:
    customer = db.session.query(Customer).filter_by(id=customer_id).first()
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


def search_customers(*, company_id: str, search: str | None = None, limit: int = 50) -> list[Customer]:
    q = db.session.query(Customer).filter(Customer.company_id == company_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Customer.full_name.ilike(like), Customer.email.ilike(like), Customer.phone.ilike(like)))
    return q.order_by(Customer.full_name.asc()).limit(limit).all()


def create_pet(*, customer_id: str, data: dict) -> Pet:
    patch = validate_payload(model=Pet, payload=data, policy=PET_POLICY, partial=False)

    def _op():
        get_customer(customer_id)
        pet = Pet(customer_id=customer_id, **patch)
        db.session.add(pet)
        db.session.flush()
        return pet

    return run_in_transaction(_op)


def get_pet(pet_id: str) -> Pet:
    pet = db.session.query(Pet).filter_by(id=pet_id).first()
    if pet is None:
        raise NotFoundError("Pet not found", details={"pet_id": pet_id})
    return pet


def list_pets(customer_id: str) -> list[Pet]:
    get_customer(customer_id)
    return db.session.query(Pet).filter_by(customer_id=customer_id).order_by(Pet.name.asc()).all()
