"""Print a password hash suitable for an entry in the directory accounts file."""

import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portal.database import hash_password


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Hash a password for config/directory.yaml")
    parser.add_argument("username", help="Directory account the hash is for")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    password = getpass.getpass(f"Password for {args.username}: ")
    if not password:
        print("Password must not be empty.", file=sys.stderr)
        return 1
    if getpass.getpass("Confirm password: ") != password:
        print("Passwords do not match.", file=sys.stderr)
        return 1

    print(f"- username: {args.username}")
    print(f"  password_hash: \"{hash_password(password)}\"")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
