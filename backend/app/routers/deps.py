from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.progression import ProgressionService, build_progression_service


def get_progression(db: Session = Depends(get_db)) -> ProgressionService:
    return build_progression_service(db)
