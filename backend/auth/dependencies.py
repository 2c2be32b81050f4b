from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth import jwt_handler
from backend.database import get_db
from backend.models.doctor import Doctor
from backend.models.user import User
from backend.scheduling.domain import Actor, Role

security = HTTPBearer()


def resolve_actor(email: str, db: Session) -> Actor:
    try:
        user = db.query(User).filter(User.email == email.strip().lower()).first()
        if user is None:
            raise HTTPException(status_code=401, detail="User not found")

        try:
            role = Role((user.role or "").strip().lower())
        except ValueError as exc:
            raise HTTPException(status_code=403, detail="Unknown role") from exc

        doctor_id = None
        if role is Role.DOCTOR:
            doctor_id = db.query(Doctor.id).filter(Doctor.user_id == user.id).scalar()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=503,
            detail="Database unavailable. Verify DATABASE_URL and Postgres credentials.",
        ) from exc

    return Actor(id=user.id, role=role, doctor_id=doctor_id)


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Actor:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    return resolve_actor(email, db)
