from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from backend.auth import jwt_handler

PATIENT_ROLE = "patient"
DOCTOR_ROLE = "doctor"

security = HTTPBearer()


class CallerIdentity(BaseModel):
    """Already-authenticated caller as asserted by the identity provider."""

    subject_id: int
    role: str
    email_verified: bool = False


def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CallerIdentity:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    if role not in {PATIENT_ROLE, DOCTOR_ROLE}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token role")

    return CallerIdentity(
        subject_id=int(subject),
        role=role,
        email_verified=bool(payload.get("email_verified", False)),
    )


def require_patient(identity: CallerIdentity = Depends(get_current_identity)) -> CallerIdentity:
    if identity.role != PATIENT_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only patients can do this.")
    return identity


def require_verified_patient(identity: CallerIdentity = Depends(require_patient)) -> CallerIdentity:
    if not identity.email_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Please verify your email before booking appointments.",
        )
    return identity


def require_doctor(identity: CallerIdentity = Depends(get_current_identity)) -> CallerIdentity:
    if identity.role != DOCTOR_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only doctors can do this.")
    return identity
