"""CLI script to bootstrap an admin account in the backend DB.
Usage: python scripts/create_admin.py ID "Full Name" EMAIL PASSWORD [--major SE] [--cohort K18]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `teamhub` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from teamhub import errors, services
from teamhub.database import create_db_and_tables, engine
from teamhub.models import Role


def main(admin_id: str, full_name: str, email: str, password: str, major: str, cohort: str) -> int:
    """Create the admin account and print the result.

    Admins share the student table, so a major and cohort are required
    even though they are only informational for admins.
    """
    create_db_and_tables()
    with Session(engine, expire_on_commit=False) as session:
        try:
            admin = services.AuthService(session).register_student(
                admin_id, full_name, email, password, major, cohort, role=Role.ADMIN,
            )
        except errors.DomainError as e:
            print(f'Could not create admin: {e.code}: {e.message}')
            return 1
    print(f"Created admin {admin['id']} <{admin['email']}>")
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('id')
    parser.add_argument('full_name')
    parser.add_argument('email')
    parser.add_argument('password')
    parser.add_argument('--major', default='SE', help='Academic track (SE, AI, SA, SS, IB)')
    parser.add_argument('--cohort', default='K18', help='Cohort code (K15..K22)')
    args = parser.parse_args()
    sys.exit(main(args.id, args.full_name, args.email, args.password, args.major, args.cohort))
