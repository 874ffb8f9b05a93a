from sqlalchemy.orm import Session
from sureodds.core.config import Settings, settings
from sureodds.core.security import hash_password
from sureodds.db.session import SessionLocal, init_db
from sureodds.models.user import User

def upsert_admin(db: Session, email: str, password: str, name: str = "Admin") -> User:
    user = db.query(User).filter(User.email == email).first()
    if user:
        user.role = "ADMIN"
        user.password_hash = hash_password(password)
        return user

    user = User(
        email=email,
        name=name,
        password_hash=hash_password(password),
        role="ADMIN",
    )
    db.add(user)
    return user

def main(config: Settings = settings):
    # ADMIN_EMAIL / ADMIN_PASSWORD come in through Settings (.env or environment)
    if not config.admin_password:
        raise SystemExit("Set ADMIN_PASSWORD before seeding the admin user")

    init_db()
    db = SessionLocal()
    try:
        user = upsert_admin(db, config.admin_email.lower(), config.admin_password)
        db.commit()
        print("Seeded admin user:", user.email)
    finally:
        db.close()

if __name__ == "__main__":
    main()
