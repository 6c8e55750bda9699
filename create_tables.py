"""
Simple script to create the chat tables.
Run this once to set up the tables in your database.

Usage: python create_tables.py
"""

from sqlalchemy import inspect
from models import Base  # Import models to register them
from database import engine

if __name__ == "__main__":
    print("Creating database tables...")

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Verify tables were created
    existing = set(inspect(engine).get_table_names())
    for table_name in Base.metadata.tables:
        if table_name in existing:
            print(f"✓ {table_name} table created successfully!")
        else:
            print(f"✗ Failed to create {table_name} table")

    engine.dispose()
