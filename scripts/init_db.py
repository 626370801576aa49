#!/usr/bin/env python3
"""
Create referral tables (idempotent).
Run from the project root: python -m scripts.init_db
or: PYTHONPATH=. python scripts/init_db.py
"""
import os
import sys

# project root on PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.base import Base
from app.db.session import engine
from app.models import audit_log, referral_code, referral_redemption  # noqa: F401  register tables


def main():
    Base.metadata.create_all(bind=engine)
    print("Tables:", ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    main()
