"""Catalog tables: categories, products, users.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.execute("""
        CREATE TABLE categories (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            "desc" TEXT
        );
    """)

    op.execute("""
        CREATE TABLE products (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            qty INTEGER,
            price DOUBLE PRECISION,
            "desc" TEXT,
            category TEXT NOT NULL
        );
    """)

    # categoryView and lowStockView both partition by category
    op.execute("CREATE INDEX idx_products_category_name ON products (category, name);")
    op.execute("CREATE INDEX idx_products_category_qty ON products (category, qty);")

    op.execute("""
        CREATE TABLE users (
            id TEXT PRIMARY KEY,
            username TEXT UNIQUE NOT NULL,
            password TEXT NOT NULL
        );
    """)


def downgrade():
    op.execute("DROP TABLE IF EXISTS users;")
    op.execute("DROP TABLE IF EXISTS products;")
    op.execute("DROP TABLE IF EXISTS categories;")
