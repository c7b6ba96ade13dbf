from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from delivery_workflow.config import DATABASE_URL, DB_ECHO

# SQLAlchemy setup
engine = create_engine(DATABASE_URL, echo=DB_ECHO)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
