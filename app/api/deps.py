from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.person import Person


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    name: str


def get_current_user(
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> AuthContext:
    """Resolve the caller from the identity header set by the auth gateway.

    Token verification happens upstream; this only maps the asserted user id
    to an active person.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Authentication required")
    person = db.get(Person, user_id)
    if person is None or not person.is_active:
        raise HTTPException(status_code=401, detail="Authentication required")
    return AuthContext(user_id=person.id, name=person.name)
