from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from hr_workflow.core.config import settings

# Support both PostgreSQL and SQLite via centralized settings
DATABASE_URL = settings.database_url


def build_engine(url: str):
    if url.startswith("postgresql"):
        return create_engine(url)
    # SQLite configuration for local development/testing
    return create_engine(url, connect_args={"check_same_thread": False})


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    """
    Session Provider: Provides a database session per request.
    Transaction management is handled explicitly in the Service Layer.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None):
    """
    Registers all domain models and initializes the database schema.
    This should be called during the application startup lifespan.
    """
    # Import all models to ensure they are registered with Base.metadata before create_all
    from hr_workflow.models import employee, task, approval, performance, evaluation, notification  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
