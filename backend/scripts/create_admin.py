"""
Script to create an admin account directly, skipping the OTP step
Run: python scripts/create_admin.py
"""
import sys
import os
import getpass

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from deeptech.core.database import SessionLocal, Base, engine
from deeptech.core.security import get_password_hash
from deeptech.models.account import Account, ROLE_ADMIN, STATUS_APPROVED, normalize_email
from deeptech.modules.auth.lifecycle import ADMIN_DOMAINS, is_admin_email


def make_admin(db, email: str, full_name: str, password: str):
    """
    Create a ready-to-login admin, or promote the existing account with that email.
    Returns (account, created). Raises ValueError if the email already belongs to an admin.
    """
    account = db.query(Account).filter(Account.email == email).first()
    created = account is None
    if created:
        account = Account(email=email, full_name=full_name)
        db.add(account)
    elif account.role == ROLE_ADMIN:
        raise ValueError(f"Admin with email {email} already exists!")

    account.role = ROLE_ADMIN
    account.domains = ADMIN_DOMAINS
    account.password_hash = get_password_hash(password)
    account.has_set_password = True
    account.is_email_verified = True
    account.annotator_status = STATUS_APPROVED
    account.micro_tasker_status = STATUS_APPROVED
    db.commit()
    db.refresh(account)
    return account, created


def create_admin():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    email = normalize_email(input("Admin email: "))
    if not is_admin_email(email):
        print(f"❌ {email} is not an allowed admin email (domain or ADMIN_EMAILS)")
        return

    full_name = input("Full name: ").strip() or "Admin"
    password = getpass.getpass("Password: ").strip()
    if len(password) < 8 or "\x00" in password:
        print("❌ Password must be at least 8 characters")
        return

    try:
        admin, created = make_admin(db, email, full_name, password)
        print(f"\n✅ Admin {'created' if created else 'promoted'}")
        print(f"   Email: {email}")
        print(f"   ID: {admin.id}")

    except Exception as e:
        print(f"❌ Error: {e}")
        db.rollback()
    finally:
        db.close()


if __name__ == "__main__":
    print("=" * 50)
    print("   CREATE ADMIN ACCOUNT - Deep Tech")
    print("=" * 50)
    create_admin()
