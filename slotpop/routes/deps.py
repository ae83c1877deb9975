from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from ..container import Container, get_container


def get_db(c: Container = Depends(get_container)) -> Generator[Session, None, None]:
    db = c.session_factory()
    try:
        yield db
    finally:
        db.close()
