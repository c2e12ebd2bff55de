"""
Migration helper for an existing planner SQLite DB.
Run:  python migrate.py [path/to/planner.db]

What it does (idempotent):
- Create time_block_template, template_note and materialization_exclusion
- Add template_id to time_block
- Add next_time_block_order to day and backfill from MAX(order)+1
- Add next_note_order to time_block and backfill from MAX(order)+1
- Add the unique indexes materialization relies on
"""
import sqlite3
import sys
from pathlib import Path

DB_PATH = Path("instance") / "planner.db"


def table_exists(cursor, table):
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,))
    return cursor.fetchone() is not None


def column_exists(cursor, table, column):
    cursor.execute(f"PRAGMA table_info({table})")
    return any(row[1] == column for row in cursor.fetchall())


def add_column(cursor, table, column, col_type):
    if column_exists(cursor, table, column):
        print(f"[skip] {column} already exists on {table}")
        return False
    cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
    print(f"[add] {column} added to {table}")
    return True


def create_index(cursor, name, table, columns, unique=False):
    kind = "UNIQUE INDEX" if unique else "INDEX"
    cursor.execute(f"CREATE {kind} IF NOT EXISTS {name} ON {table} ({columns})")
    print(f"[index] {name} on {table}({columns})")


def create_template_tables(cur):
    if not table_exists(cur, "time_block_template"):
        cur.execute("""
            CREATE TABLE time_block_template (
                id INTEGER PRIMARY KEY,
                user_id INTEGER NOT NULL REFERENCES user(id),
                name VARCHAR(200) NOT NULL,
                start_time VARCHAR(5) NOT NULL,
                end_time VARCHAR(5) NOT NULL,
                color VARCHAR(7),
                days_of_week VARCHAR(20) NOT NULL,
                is_active BOOLEAN NOT NULL DEFAULT 1,
                active_until DATE,
                created_at DATETIME,
                updated_at DATETIME
            )
        """)
        print("[create] time_block_template")
    create_index(cur, "ix_template_user_active", "time_block_template", "user_id, is_active")

    if not table_exists(cur, "template_note"):
        cur.execute("""
            CREATE TABLE template_note (
                id INTEGER PRIMARY KEY,
                template_id INTEGER NOT NULL REFERENCES time_block_template(id) ON DELETE CASCADE,
                content TEXT NOT NULL,
                "order" INTEGER NOT NULL
            )
        """)
        print("[create] template_note")
    create_index(cur, "uq_template_note_order", "template_note", 'template_id, "order"', unique=True)

    if not table_exists(cur, "materialization_exclusion"):
        cur.execute("""
            CREATE TABLE materialization_exclusion (
                id INTEGER PRIMARY KEY,
                template_id INTEGER NOT NULL REFERENCES time_block_template(id) ON DELETE CASCADE,
                date DATE NOT NULL,
                created_at DATETIME
            )
        """)
        print("[create] materialization_exclusion")
    create_index(cur, "uq_exclusion_template_date", "materialization_exclusion", "template_id, date", unique=True)


def add_template_link(cur):
    add_column(cur, "time_block", "template_id", "INTEGER REFERENCES time_block_template(id) ON DELETE SET NULL")
    create_index(cur, "ix_time_block_template_id", "time_block", "template_id")
    create_index(cur, "uq_time_block_day_template", "time_block", "day_id, template_id", unique=True)


def add_order_counters(cur):
    add_column(cur, "day", "next_time_block_order", "INTEGER NOT NULL DEFAULT 0")
    cur.execute("""
        UPDATE day SET next_time_block_order = COALESCE(
            (SELECT MAX(tb."order") + 1 FROM time_block tb WHERE tb.day_id = day.id), 0
        )
    """)
    print("[update] backfilled day.next_time_block_order")

    add_column(cur, "time_block", "next_note_order", "INTEGER NOT NULL DEFAULT 0")
    cur.execute("""
        UPDATE time_block SET next_note_order = COALESCE(
            (SELECT MAX(n."order") + 1 FROM note n WHERE n.time_block_id = time_block.id), 0
        )
    """)
    print("[update] backfilled time_block.next_note_order")


def add_unique_orders(cur):
    create_index(cur, "uq_day_user_date", "day", "user_id, date", unique=True)
    create_index(cur, "uq_time_block_day_order", "time_block", 'day_id, "order"', unique=True)
    create_index(cur, "uq_note_block_order", "note", 'time_block_id, "order"', unique=True)


def main(db_path=DB_PATH):
    conn = sqlite3.connect(db_path)
    cur = conn.cursor()
    try:
        create_template_tables(cur)
        add_template_link(cur)
        add_order_counters(cur)
        add_unique_orders(cur)
        conn.commit()
        print("Migration complete.")
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()


if __name__ == "__main__":
    main(Path(sys.argv[1]) if len(sys.argv) > 1 else DB_PATH)
