from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sureodds.db.session import get_db
from sureodds.models.user import User
from sureodds.schemas.auth import RegisterIn, LoginIn, TokenOut
from sureodds.schemas.user import UserOut
from sureodds.core.errors import AuthenticationError, ValidationError
from sureodds.core.security import hash_password, verify_password, create_access_token
from sureodds.api.deps import get_current_user

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/register", response_model=UserOut)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    email = payload.email.lower()
    existing = db.query(User).filter(User.email == email).first()
    if existing:
        raise ValidationError("Email already registered")

    user = User(
        email=email,
        name=payload.name,
        password_hash=hash_password(payload.password),
    )

    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == payload.email.lower()).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise AuthenticationError("Invalid email or password")

    token = create_access_token(subject=str(user.id), role=user.role)
    return TokenOut(access_token=token)

@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)):
    return current_user
