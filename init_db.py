#!/usr/bin/env python
"""Database initialization script for the escrow backend.

Creates all tables from the SQLAlchemy models. Run once before starting the
application for the first time.

Usage:
    python init_db.py
"""

import os
import sys
from handyhire import create_app, db


def init_database():
    """Initialize the database by creating all tables."""
    config_name = os.getenv('FLASK_ENV', 'development')
    os.environ['SCHEDULER_ENABLED'] = 'false'
    app = create_app(config_name)
    
    print(f"\n{'='*60}")
    print(f"Database Initialization for {config_name.upper()} Environment")
    print(f"{'='*60}\n")
    
    with app.app_context():
        try:
            print(f"Database URI: {app.config['SQLALCHEMY_DATABASE_URI']}\n")
            db.create_all()
            
            print("Created tables:")
            for table_name in sorted(db.metadata.tables):
                print(f"  ✓ {table_name}")
            
            print(f"\n{'='*60}")
            print("✅ Database initialization complete!")
            print(f"{'='*60}\n")
            return True
        except Exception as e:
            print(f"\n❌ Error creating database tables: {e}\n")
            return False


if __name__ == '__main__':
    sys.exit(0 if init_database() else 1)
