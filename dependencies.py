from collections.abc import Generator
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from db import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_optional_actor_id(x_actor_id: Optional[str] = Header(default=None)) -> Optional[str]:
    # identity comes from the upstream session provider; role checks live there too
    return x_actor_id or None


def get_actor_id(actor_id: Optional[str] = Depends(get_optional_actor_id)) -> str:
    if not actor_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return actor_id
