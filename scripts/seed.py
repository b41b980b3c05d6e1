"""Seed a demo catalog and a vendor staff login for local development."""
from __future__ import annotations

from dotenv import load_dotenv

load_dotenv()

from app import models  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.db import create_all, get_sessionmaker  # noqa: E402
from app.services.identities import issue_session  # noqa: E402

CATALOG = {
    "Hinoki Atelier": [
        ("Hinoki bath stool", 12800),
        ("Cypress soap dish", 3200),
    ],
    "Kyoto Tea Works": [
        ("Sencha starter set", 5400),
        ("Matcha whisk", 2600),
    ],
}


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    create_all()
    session = get_sessionmaker()()

    try:
        first_vendor: models.Vendor | None = None
        for vendor_name, products in CATALOG.items():
            vendor = models.Vendor(name=vendor_name, is_active=True)
            vendor.products = [
                models.Product(name=name, unit_amount=amount, currency=settings.CHECKOUT_CURRENCY)
                for name, amount in products
            ]
            session.add(vendor)
            first_vendor = first_vendor or vendor
        session.flush()

        staff = models.Identity(
            is_guest=False,
            external_provider="seed",
            external_subject="vendor-staff",
            display_name="Demo vendor staff",
            vendor_id=first_vendor.id,
        )
        session.add(staff)
        session.flush()
        token = issue_session(session, staff)
        session.commit()
        print("Seed data inserted.")
        print(f"Vendor staff token for {first_vendor.name}: {token}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
