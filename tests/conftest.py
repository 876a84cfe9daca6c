import os
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DQ_DATABASE_URL", "sqlite+pysqlite:///:memory:")
# The in-memory database is one shared connection; keep evaluation on one worker.
os.environ.setdefault("DQ_MAX_WORKERS", "1")

from dqaudit.db import ENGINE
from dqaudit.store import STORE


SAMPLE_DDL = [
    "CREATE TABLE segments (segment_id INTEGER PRIMARY KEY, name TEXT NOT NULL)",
    """
    CREATE TABLE customers (
        customer_id INTEGER PRIMARY KEY,
        email TEXT,
        phone TEXT,
        age INTEGER,
        segment_id INTEGER,
        status TEXT,
        signup_date DATE,
        last_order_date DATE
    )
    """,
]

SAMPLE_ROWS = [
    "INSERT INTO segments (segment_id, name) VALUES (1, 'retail'), (2, 'wholesale'), (3, 'partner')",
    """
    INSERT INTO customers
        (customer_id, email, phone, age, segment_id, status, signup_date, last_order_date)
    VALUES
        (1, 'ann@example.com', '+1 555-010-0001', 35, 1, 'ACTIVE', '2024-01-10', '2024-03-01'),
        (2, 'ann@example.com', '555-01', 150, 2, 'ACTIVE', '2024-02-01', '2024-01-15'),
        (3, 'bob@example.com', NULL, -5, 99, 'inactive', '2024-02-10', NULL),
        (4, 'not-an-email', '(555) 010-0004', 40, NULL, 'CLOSED', '2024-03-01', '2024-03-05')
    """,
]


@pytest.fixture(autouse=True)
def reset_store():
    STORE.reset()
    yield


@pytest.fixture
def sample_tables():
    """customers/segments with one known defect per dimension."""
    with ENGINE.begin() as conn:
        for statement in SAMPLE_DDL + SAMPLE_ROWS:
            conn.exec_driver_sql(statement)
    yield ENGINE
    with ENGINE.begin() as conn:
        conn.exec_driver_sql("DROP TABLE IF EXISTS customers")
        conn.exec_driver_sql("DROP TABLE IF EXISTS segments")
