from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, Float, Integer, JSON, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from planrx.config.settings import get_settings

settings = get_settings()

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, pool_pre_ping=True, echo=False, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class BaselineModel(Base):
    __tablename__ = "baselines"

    id = Column(String, primary_key=True)
    project_id = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False)
    tasks = Column(JSON, nullable=False)  # List[{task_id, start, end, sequence, duration}]
    created_at = Column(DateTime, default=datetime.utcnow)


class AssignmentModel(Base):
    __tablename__ = "assignments"

    id = Column(String, primary_key=True)
    project_id = Column(String, nullable=False, index=True)
    resource_id = Column(String, nullable=False, index=True)
    task_id = Column(String, nullable=False)
    start = Column(Date, nullable=False)
    end = Column(Date, nullable=False)
    amount = Column(Float, nullable=False)
    daily_amount = Column(Float, nullable=True)
    total = Column(Float, nullable=False)
    cost = Column(Float, default=0.0)
    over_allocated = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


def init_db():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
