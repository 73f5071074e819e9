"""Seed sample expenses and savings for the demo user via the API."""

import os
import sys
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import psycopg
from psycopg.rows import dict_row

DATABASE_URL = os.environ.get("DATABASE_URL", "")
JWT_SECRET = os.environ.get("JWT_SECRET_KEY", "change-me")
API_BASE = os.environ.get("API_BASE", "http://localhost:8000")
DEMO_EMAIL = "demo@finnova.local"

SAMPLE_RECORDS = [
    # Expenses
    {"collection": "expenses", "category": "Food", "amount": "12.50", "date": "2026-01-03", "description": "Weekly groceries"},
    {"collection": "expenses", "category": "Food", "amount": "8.75", "date": "2026-01-05", "description": "Lunch"},
    {"collection": "expenses", "category": "Housing", "amount": "1200.00", "date": "2026-01-01", "description": "January rent"},
    {"collection": "expenses", "category": "Transport", "amount": "45.00", "date": "2026-01-07", "description": "Airport ride"},
    {"collection": "expenses", "category": "Shopping", "amount": "89.99", "date": "2026-01-12", "description": "Headphones"},
    {"collection": "expenses", "category": "Entertainment", "amount": "15.99", "date": "2026-01-14", "description": "Streaming subscription"},
    {"collection": "expenses", "category": "Health", "amount": "49.99", "date": "2026-01-15", "description": "Gym membership"},
    {"collection": "expenses", "category": "Utilities", "amount": "85.00", "date": "2026-02-01", "description": "Electric bill"},
    {"collection": "expenses", "category": "Housing", "amount": "1200.00", "date": "2026-02-01", "description": "February rent"},
    {"collection": "expenses", "category": "Food", "amount": "67.80", "date": "2026-02-14", "description": "Dinner out"},
    # Savings / income
    {"collection": "savings", "category": "Salary", "amount": "2850.00", "date": "2026-01-15", "description": "January paycheck"},
    {"collection": "savings", "category": "Freelance", "amount": "200.00", "date": "2026-01-20", "description": "Logo design project"},
    {"collection": "savings", "category": "Salary", "amount": "2850.00", "date": "2026-02-15", "description": "February paycheck"},
    {"collection": "savings", "category": "Other", "amount": "25.00", "date": "2026-02-18", "description": "Refund from friend"},
]


def main():
    if not DATABASE_URL:
        print("ERROR: DATABASE_URL env var is not set")
        sys.exit(1)

    # Step 1: Connect to DB and fetch the demo user
    print("Connecting to database...")
    with psycopg.connect(DATABASE_URL, row_factory=dict_row) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id, email FROM users WHERE email = %s", (DEMO_EMAIL,))
            row = cur.fetchone()
            if not row:
                print(f"ERROR: Demo user {DEMO_EMAIL} not found. Register it first.")
                sys.exit(1)
            user_id = str(row["id"])
            print(f"  Demo user ID: {user_id}")

    # Step 2: Generate JWT
    token = jwt.encode(
        {
            "sub": user_id,
            "email": DEMO_EMAIL,
            "type": "access",
            "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        },
        JWT_SECRET,
        algorithm="HS256",
    )
    print("  Generated JWT token")

    # Step 3: POST records via API
    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    success = 0
    errors = 0

    for record in SAMPLE_RECORDS:
        payload = {
            "description": record["description"],
            "amount": record["amount"],
            "category": record["category"],
            "date": record["date"],
        }

        resp = httpx.post(f"{API_BASE}/records/{record['collection']}", json=payload, headers=headers)
        if resp.status_code == 201:
            success += 1
            print(f"  OK: {record['collection']:8s} ${record['amount']:>8s}  {record['description']:24s}  {record['date']}")
        else:
            errors += 1
            print(f"  FAIL ({resp.status_code}): {resp.text}")

    print(f"\nDone! {success} created, {errors} errors.")


if __name__ == "__main__":
    main()
