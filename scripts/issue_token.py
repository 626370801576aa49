#!/usr/bin/env python3
"""
Issue a signed bearer token for local testing of the referral API.
Usage: python -m scripts.issue_token <user_id> [ADMIN|USER]
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.auth.jwt import create_access_token


def main():
    if len(sys.argv) < 2:
        print(__doc__.strip())
        sys.exit(1)
    role = sys.argv[2].upper() if len(sys.argv) > 2 else "USER"
    print(create_access_token({"sub": sys.argv[1], "role": role}))


if __name__ == "__main__":
    main()
