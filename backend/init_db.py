"""Initialize database with a sample A/B test."""
import sys
from sqlalchemy.orm import Session
from splitlab.database import SessionLocal, engine, Base
from splitlab.models import ABTest, AssignmentType, UrlMatchType
from splitlab.schemas.ab_test import ABTestCreate
from splitlab.services.lifecycle import TestLifecycleManager
from splitlab.services.repository import SqlAlchemyRepository


def init_database():
    """Create tables and a sample DRAFT test."""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()

    try:
        # Check if a test already exists
        existing_test = db.query(ABTest).first()
        if existing_test:
            print("✓ Database already initialized")
            return

        print("\nCreating sample A/B test...")
        lifecycle = TestLifecycleManager(SqlAlchemyRepository(db))
        test = lifecycle.create_test(ABTestCreate(
            name="Quote page headline",
            description="Short vs. benefit-led headline on the quote landing page",
            url="/quote/*",
            url_match_type=UrlMatchType.PATTERN,
            assignment_type=AssignmentType.ALTERNATING,
            variant_a_content={"headline": "Get your quote in 60 seconds"},
            variant_b_content={"headline": "Compare 30+ insurers and save"},
            created_by="init_db"
        ))
        print(f"✓ Created test: {test.name} ({test.id})")

        print("\n" + "="*50)
        print("✓ Database initialized successfully!")
        print("="*50)
        print("\nStart the test with:")
        print(f"  curl -X POST http://localhost:8000/ab-tests/{test.id}/start")
        print("\n" + "="*50)

    except Exception as e:
        print(f"✗ Error initializing database: {e}")
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    init_database()
