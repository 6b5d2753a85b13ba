"""Seed database with an administrator and demo catalog data."""
import os
import uuid
from datetime import date, timedelta

from segheria.auth import get_password_hash
from segheria.database import SessionLocal
from segheria.models import Client, ClientProduct, Order, OrderLine, User


def seed():
    """Seed database with demo data."""
    db = SessionLocal()

    try:
        admin_email = os.getenv("SEED_ADMIN_EMAIL", "admin@segheria.local")
        admin_password = os.getenv("SEED_ADMIN_PASSWORD", "Admin123")
        if db.query(User).filter(User.email == admin_email).first():
            print(f"Admin {admin_email} already exists, nothing to do")
            return

        db.add(
            User(
                id=uuid.uuid4(),
                email=admin_email,
                name="Amministratore",
                role="admin",
                password_hash=get_password_hash(admin_password),
                registration_status="active",
                email_confirmed=True,
                token_version=0,
            )
        )

        client = Client(
            id=uuid.uuid4(),
            company_name="Imballaggi Rossi S.r.l.",
            vat_number="IT01234567890",
            email="ordini@imballaggirossi.it",
            phone="+39 0471 000000",
            addresses=["Via dei Pini 12, Bolzano"],
        )
        db.add(client)
        db.flush()

        products = [
            ClientProduct(client_id=client.id, name="Pallet EPAL", dimensions="1200x800", heat_treated=True),
            ClientProduct(client_id=client.id, name="Cassa", dimensions="1000x600x500", heat_treated=False),
        ]
        db.add_all(products)
        db.flush()

        order = Order(id=uuid.uuid4(), order_number=f"{date.today().year}/DEM-001", client_id=client.id)
        db.add(order)
        db.flush()

        for offset, product in enumerate(products):
            db.add(
                OrderLine(
                    order_id=order.id,
                    product_id=product.id,
                    status="production",
                    payload={
                        "quantity": 50 * (offset + 1),
                        "deliveryDate": (date.today() + timedelta(days=7 + offset)).isoformat(),
                    },
                )
            )

        db.commit()
        print(f"Seeded admin {admin_email}, 1 client, {len(products)} products, 1 order")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
