#!/usr/bin/env python3
# scripts/seed_demo.py
# usage (from the project root): python -m scripts.seed_demo [--db data/studio.db]
import argparse
import os


DEMO_EQUIPMENT = [
    ("Canon EOS R5", "CAM-0001", "Camera"),
    ("Sony A7 IV", "CAM-0002", "Camera"),
    ("RF 24-70mm f/2.8", "LEN-0001", "Lens"),
    ("Godox AD600 Pro", "LGT-0001", "Lighting"),
    ("Manfrotto 055 Tripod", "SUP-0001", "Support"),
]

DEMO_EMPLOYEES = [
    ("admin@studiogreen.com", "Super Admin", "SUPER_ADMIN"),
    ("lena@studiogreen.com", "Lena Park", "EMPLOYEE"),
    ("omar@studiogreen.com", "Omar Haddad", "EMPLOYEE"),
]

DEMO_CLIENTS = [
    ("Northwind Weddings", "bookings@northwind.example", "+1 555 0100"),
    ("Blue Fern Magazine", "photo@bluefern.example", None),
]


def main() -> None:
    ap = argparse.ArgumentParser(description="Insert demo reference data (idempotent).")
    ap.add_argument("--db", default=None, help="Path to SQLite DB (default: APP_DB_PATH or data/studio.db)")
    args = ap.parse_args()

    if args.db:
        os.environ["APP_DB_PATH"] = args.db

    # imported late so --db is honoured by db.py
    import crud
    import orm  # noqa: F401
    from db import Base, SessionLocal, engine

    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        for name, serial, category in DEMO_EQUIPMENT:
            if crud.find_equipment_by_serial(db, serial):
                print(f"Already exists: equipment {serial}")
                continue
            crud.create_equipment(db, name=name, serial_number=serial, category=category, commit=False)
            print(f"Added equipment: {serial}")

        for email, full_name, role in DEMO_EMPLOYEES:
            if crud.find_employee_by_email(db, email):
                print(f"Already exists: employee {email}")
                continue
            crud.create_employee(db, email=email, full_name=full_name, role=role, commit=False)
            print(f"Added employee: {email}")

        for name, email, phone in DEMO_CLIENTS:
            if crud.find_client_by_email(db, email):
                print(f"Already exists: client {email}")
                continue
            crud.create_client(db, name=name, email=email, phone=phone, commit=False)
            print(f"Added client: {email}")

        db.commit()
        print("OK")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
