"""Test configuration and fixtures."""

import os
import sys
import unittest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.dirname(os.path.dirname(__file__))))

from orderledger.db.models import Base

# Use an in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine and session factory
test_engine = create_engine(TEST_DATABASE_URL)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def setup_test_db():
    """Create all tables in the test database."""
    Base.metadata.create_all(bind=test_engine)


def teardown_test_db():
    """Drop all tables from the test database."""
    Base.metadata.drop_all(bind=test_engine)


class BaseTestCase(unittest.TestCase):
    """Base test case giving every test a fresh schema and its own session."""

    def setUp(self):
        setup_test_db()
        self.db = TestSessionLocal()

    def tearDown(self):
        self.db.rollback()
        self.db.close()
        teardown_test_db()
