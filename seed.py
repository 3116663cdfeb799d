from datetime import timedelta
import random

from faker import Faker

from billing.core.database import Base, SessionLocal, engine
from billing.models import Client, DebtAdjustment, Invoice, InvoiceItem, Order, OrderItem, Payment, Product
from billing.models.invoice import PaymentMethod
from billing.services.client_service import create_client
from billing.services.product_service import create_product
from billing.services.order_service import create_order, confirm_order, fulfill_order
from billing.services.invoice_service import generate_from_order, issue_invoice, record_payment
from billing.utils.timeutils import today_utc

fake = Faker()


def clear(db):
    print("🔄 Clearing existing data...")
    for model in (DebtAdjustment, Payment, InvoiceItem, Invoice, OrderItem, Order, Product, Client):
        db.query(model).delete()
    db.commit()
    print("✅ Data cleared.")


def seed(db):
    print("🔄 Creating clients...")
    clients = []
    for _ in range(random.randint(15, 25)):
        clients.append(create_client(
            db,
            name=fake.name(),
            phone=''.join(filter(str.isdigit, fake.phone_number()))[:20],
            address=fake.address().replace('\n', ', '),
            opening_debt_cents=random.choice([0, 0, 0, random.randint(1, 500) * 100]),
        ))
    print(f"✅ Seeded {len(clients)} clients")

    print("🔄 Creating products...")
    products = []
    for i in range(20):
        products.append(create_product(
            db,
            name=fake.word().capitalize(),
            sku=f"SKU-{i + 1:04d}",
            description=fake.sentence(),
            unit_price_cents=random.randint(5, 500) * 100,
        ))
    print(f"✅ Seeded {len(products)} products")

    print("🔄 Creating orders, invoices and payments...")
    today = today_utc()
    orders = 0
    payments = 0
    for _ in range(random.randint(40, 60)):
        issue_date = today - timedelta(days=random.randint(0, 180))
        lines = [
            {
                "product_id": product.id,
                "qty": random.randint(1, 10),
                "discount_percent": random.choice([0, 0, 5, 10]),
            }
            for product in random.sample(products, random.randint(1, 4))
        ]
        order = create_order(
            db,
            client_id=random.choice(clients).id,
            items=lines,
            discount_percent=random.choice([0, 0, 5, 10]),
            tax_percent=random.choice([0, 9, 19]),
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=30),
        )
        orders += 1

        if random.random() < 0.2:
            continue
        confirm_order(db, order.id)

        invoice = generate_from_order(db, order.id, issue_date=issue_date)
        issue_invoice(db, invoice.id)

        if random.random() < 0.7:
            amount = invoice.total_cents if random.random() < 0.6 else invoice.total_cents // 2
            if amount > 0:
                record_payment(
                    db,
                    invoice.id,
                    amount,
                    method=random.choice(list(PaymentMethod)),
                    paid_at=fake.date_time_between(start_date=issue_date, end_date="now"),
                )
                payments += 1

        if random.random() < 0.5:
            fulfill_order(db, order.id)

    print(f"✅ Seeded {orders} orders")
    print(f"✅ Seeded {payments} payments")


if __name__ == "__main__":
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        clear(db)
        seed(db)
        print("🎉 Seeding complete.")
    except Exception as e:
        db.rollback()
        print(f"❌ Seeding failed: {e}")
        raise
    finally:
        db.close()
