from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from socialhub.db.base import SessionLocal, engine, Base
from socialhub.db import models  # noqa: F401  (registers tables on Base.metadata)
from socialhub.services.oauth_connector import OAuthConnector
from socialhub.services.publisher import PublishScheduler

def init_db() -> None:
    Base.metadata.create_all(bind=engine)

def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_connector(db: Session = Depends(get_db)) -> OAuthConnector:
    return OAuthConnector(db)


def get_publisher(connector: OAuthConnector = Depends(get_connector)) -> PublishScheduler:
    return PublishScheduler(connector.db, connector)
