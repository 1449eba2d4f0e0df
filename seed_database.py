#!/usr/bin/env python
"""
Seed database with sample clients, users and filings.

This script populates the database with a small, realistic data set so the
API and dashboard have something to show.  Filings are created and moved
through their lifecycle by the engine itself, so every seeded status is
reachable by a legal walk.
"""

import sys
from datetime import date, timedelta

from sqlmodel import Session

from taxdesk.db import create_all, engine, upsert_client, upsert_user
from taxdesk.engine import FilingEngine
from taxdesk.errors import Conflict
from taxdesk.models import ClientRef, FilingStatus, Professional, Role
from taxdesk.settings import configure_logging
from taxdesk.store_db import DBClientDirectory, DBFilingStore, DBProfessionalDirectory

SAMPLE_USERS = [
    Professional(id=1, role=Role.ADMIN, full_name="Site Admin", email="admin@example.com"),
    Professional(id=9, role=Role.CA, full_name="Anita Rao", email="anita@example.com"),
    Professional(id=11, role=Role.CA, full_name="Vikram Shah", email="vikram@example.com"),
    Professional(id=12, role=Role.CA, is_active=False, full_name="Retired CA", email="old@example.com"),
    Professional(id=20, role=Role.CUSTOMER, full_name="Priya Nair", email="priya@example.com"),
]

SAMPLE_CLIENTS = [
    ClientRef(id=5, default_ca_id=9, full_name="Priya Nair", pan_number="ABCPN1234F"),
    ClientRef(id=6, default_ca_id=None, full_name="Rahul Mehta", pan_number="BCDRM2345G"),
    ClientRef(id=7, default_ca_id=11, full_name="Mehta Traders LLP", pan_number="CDEMT3456H"),
]

# (client, tax year, type, priority, days until due, status walk after draft)
SAMPLE_FILINGS = [
    (5, "2023-2024", "individual", "medium", 20, [FilingStatus.IN_PROGRESS]),
    (5, "2023-2024", "capital_gains", "high", 5,
     [FilingStatus.IN_PROGRESS, FilingStatus.UNDER_REVIEW]),
    (6, "2023-2024", "individual", "low", 45, []),
    (7, "2022-2023", "business", "urgent", -10,
     [FilingStatus.IN_PROGRESS, FilingStatus.UNDER_REVIEW, FilingStatus.COMPLETED]),
    (7, "2023-2024", "business", "high", 12, [FilingStatus.REJECTED]),
]


def seed_database():
    """Add sample records; rerunning skips filings that already exist."""
    create_all()
    with Session(engine) as s:
        for user in SAMPLE_USERS:
            upsert_user(s, user)
        for client in SAMPLE_CLIENTS:
            upsert_client(s, client)

    eng = FilingEngine(DBFilingStore(), DBClientDirectory(), DBProfessionalDirectory())
    created = 0
    for client_id, tax_year, ftype, prio, due_in, walk in SAMPLE_FILINGS:
        try:
            filing = eng.create_filing(client_id, tax_year, ftype, priority=prio,
                                       due_date=date.today() + timedelta(days=due_in))
        except Conflict:
            print(f"Skipping existing filing: client {client_id} {tax_year} {ftype}")
            continue
        for status in walk:
            note = "Seeded rejection: documents missing" if status is FilingStatus.REJECTED else None
            eng.transition(filing.id, status, note)
        created += 1
        print(f"Added filing #{filing.id}: client {client_id} {tax_year} {ftype}")

    print(f"Successfully seeded {created} filings")
    return created


if __name__ == "__main__":
    configure_logging()
    seed_database()
    sys.exit(0)
