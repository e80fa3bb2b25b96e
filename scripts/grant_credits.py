# Manual credit grant, e.g. for support cases
import argparse

from sqlalchemy.orm import Session

from usdt_billing.db import SessionLocal
from usdt_billing.services.entitlements import grant_credits

def main():
    parser = argparse.ArgumentParser(description="Grant paid credits to a user")
    parser.add_argument("uid")
    parser.add_argument("amount", type=int)
    parser.add_argument("--reason", default="manual_grant")
    args = parser.parse_args()

    db: Session = SessionLocal()
    try:
        balance = grant_credits(db, args.uid, args.amount, args.reason)
    finally:
        db.close()
    print(f"Granted {args.amount} credits to {args.uid}; balance is now {balance}")

if __name__ == "__main__":
    main()
