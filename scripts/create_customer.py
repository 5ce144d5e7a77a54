import argparse
import getpass
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portal.database import Database, resolve_database_path
from portal.identity import PASSWORD_MIN_LENGTH
from portal.models import CustomerRole, CustomerStatus


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an active support portal customer account")
    parser.add_argument("username", help="Login name for the customer")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument("--full-name", default=None, help="Display name for the customer")
    parser.add_argument("--company", dest="company_name", default=None, help="Company the customer belongs to")
    parser.add_argument(
        "--admin",
        action="store_true",
        help="Grant the admin role so the account can approve other customers",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to PORTAL_DB_PATH or data/portal.sqlite3)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < PASSWORD_MIN_LENGTH:
            print(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    password = prompt_for_password()

    db_env = args.db_path or os.getenv("PORTAL_DB_PATH")
    db_path = resolve_database_path(db_env)

    database = Database(db_path)
    database.initialize()

    try:
        user = database.create_local_user(
            args.username,
            email=args.email,
            password=password,
            full_name=args.full_name,
            company_name=args.company_name,
            role=CustomerRole.ADMIN if args.admin else CustomerRole.CUSTOMER,
            status=CustomerStatus.ACTIVE,
        )
    except ValueError as exc:  # duplicates, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created {user.role.value} #{user.id}: {user.username} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
