# scripts/init_db.py
"""
Create the tables and a few demo accounts, then print a bearer token per account
"""
from freightdesk.config.database import engine, SessionLocal
from freightdesk.shared.database.models import Base, User
from freightdesk.core.auth.service import AuthService

DEMO_USERS = [
    {"phone_number": "+212600000001", "name": "Admin", "role": "admin"},
    {"phone_number": "+212600000002", "name": "Salma Coordinatrice", "role": "coordinator"},
    {"phone_number": "+212600000003", "name": "Youssef Client", "role": "client", "city": "Casablanca"},
    {"phone_number": "+212600000004", "name": "Transports Atlas", "role": "transporter", "city": "Marrakech"},
    {"phone_number": "+212600000005", "name": "Rif Logistique", "role": "transporter", "city": "Tanger"},
]

def init_db():
    """Create tables and demo users if the users table is empty"""
    Base.metadata.create_all(bind=engine)
    print("✅ Tables ready")

    db = SessionLocal()
    try:
        existing_users = db.query(User).count()
        if existing_users > 0:
            print(f"✅ {existing_users} users already exist, skipping seed")
            return

        for data in DEMO_USERS:
            db.add(User(is_active=True, is_verified=True, **data))
        db.commit()

        print("\n🔑 Demo tokens (12h):")
        for user in db.query(User).order_by(User.id).all():
            token = AuthService.create_access_token(user.id, user.role)
            print(f"   {user.role:<12} {user.name:<22} {token}")

    except Exception as e:
        print(f"❌ Error seeding database: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    init_db()
