"""
Seeds the user directory with demo accounts for local walkthroughs.

Two companies, each with a handful of account users, plus one unaffiliated
user. Phones are fixed so the QR/OTP flow can be driven by hand:

    curl -H "X-User-Id: usr_demo_sender" ...
"""
import sys
import os

# Allow running from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import engine, SessionLocal
from app import models

DEMO_USERS = [
    # (id, phone, first, last, company)
    ("usr_demo_sender", "+919876543210", "Asha", "Rao", "co_acme"),
    ("usr_demo_receiver", "+919876543211", "Vikram", "Shah", "co_acme"),
    ("usr_demo_vendor", "+919876543212", "Meera", "Iyer", "co_globex"),
    ("usr_demo_auditor", "+919876543213", "Rahul", "Menon", "co_globex"),
    ("usr_demo_guest", "+14155550100", "Sam", "Lee", None),
]


def make_user(user_id, phone, first_name, last_name, company_id):
    return models.User(
        id=user_id,
        phone=phone,
        first_name=first_name,
        last_name=last_name,
        email=f"{first_name.lower()}.{last_name.lower()}@example.com",
        company_id=company_id,
        is_active=True,
    )


def main():
    print("Creating database tables...")
    models.Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        existing = db.query(models.User).count()
        if existing > 0:
            print(f"Database already has {existing} users. Skipping seed.")
            return

        db.add_all([make_user(*row) for row in DEMO_USERS])
        db.commit()

        print(f"Successfully seeded {db.query(models.User).count()} users:")
        for user in db.query(models.User).order_by(models.User.id).all():
            print(f"  {user.id:<20} {user.phone:<15} {user.company_id or '-'}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
