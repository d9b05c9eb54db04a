#!/usr/bin/env python3
"""
User Seed Script
Creates an admin (or any other role) user for the compliance backend.

Usage:
    python -m scripts.seed_admin <email> <name> <password> [role]

Example:
    python -m scripts.seed_admin admin@agency.example "Compliance Admin" securepassword123 SUPER_ADMIN
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from compliance.database import SessionLocal, init_db
from compliance.models.db_models import UserDB, UserRole
from compliance.auth import hash_password


def create_user(email: str, name: str, password: str, role: UserRole = UserRole.ADMIN) -> bool:
    """Create a user with the given role, or upgrade an existing one."""
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        existing = db.query(UserDB).filter(UserDB.email == email).first()

        if existing:
            if existing.role == role:
                print(f"User '{email}' already has role {role.value}.")
                return False
            existing.role = role
            db.commit()
            print(f"Changed role of existing user '{email}' to {role.value}.")
            return True

        user = UserDB(
            id=str(uuid4()),
            email=email,
            name=name,
            password_hash=hash_password(password),
            role=role,
        )

        db.add(user)
        db.commit()

        print("User created successfully!")
        print(f"  Email: {email}")
        print(f"  Name: {name}")
        print(f"  Role: {role.value}")
        return True

    except Exception as e:
        print(f"Error creating user: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) not in (4, 5):
        print(__doc__)
        sys.exit(1)

    email = sys.argv[1]
    name = sys.argv[2]
    password = sys.argv[3]

    try:
        role = UserRole(sys.argv[4].upper()) if len(sys.argv) == 5 else UserRole.ADMIN
    except ValueError:
        print(f"Error: Role must be one of: {', '.join(r.value for r in UserRole)}")
        sys.exit(1)

    # Basic validation
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = create_user(email, name, password, role)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
