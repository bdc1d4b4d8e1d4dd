"""
Database loaders - idempotent upserts and account queries for SQLite.
Thin IO layer with focus on data integrity and idempotence.

Numeric columns are stored as TEXT so decimal values round-trip exactly.
"""

import sqlite3
import pandas as pd
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Any, List, Tuple, Optional, Sequence


TABLE_KEYS = {
    'securities': ('id',),
    'positions': ('account_id', 'security_id', 'date'),
    'transactions': ('transaction_id',),
    'prices': ('security_id', 'date'),
}

TABLE_COLUMNS = {
    'securities': ('id', 'symbol', 'name', 'asset_class', 'exchange', 'currency', 'ingested_at'),
    'positions': (
        'account_id', 'security_id', 'date', 'quantity', 'average_cost',
        'market_value', 'source', 'ingested_at'
    ),
    'transactions': (
        'transaction_id', 'account_id', 'date', 'type', 'security_id',
        'quantity', 'price', 'amount', 'source', 'ingested_at'
    ),
    'prices': (
        'security_id', 'date', 'open', 'high', 'low', 'close', 'volume',
        'source', 'ingested_at'
    ),
}


def init_database(conn: sqlite3.Connection) -> None:
    """
    Initialize database with required tables.
    Idempotent - safe to call multiple times.

    Args:
        conn: SQLite connection
    """
    conn.execute("PRAGMA foreign_keys = ON")

    conn.execute("""
        CREATE TABLE IF NOT EXISTS securities (
            id TEXT PRIMARY KEY,
            symbol TEXT NOT NULL,
            name TEXT,
            asset_class TEXT,
            exchange TEXT,
            currency TEXT NOT NULL DEFAULT 'USD',
            ingested_at DATETIME NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS positions (
            account_id TEXT NOT NULL,
            security_id TEXT NOT NULL,
            date DATE NOT NULL,
            quantity TEXT NOT NULL,
            average_cost TEXT NOT NULL,
            market_value TEXT NOT NULL,
            source TEXT NOT NULL,
            ingested_at DATETIME NOT NULL,
            PRIMARY KEY (account_id, security_id, date)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            transaction_id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL,
            date DATE NOT NULL,
            type TEXT NOT NULL CHECK(type IN (
                'CONTRIBUTION', 'DEPOSIT', 'WITHDRAWAL', 'DISTRIBUTION',
                'BUY', 'PURCHASE', 'SELL', 'SALE'
            )),
            security_id TEXT,
            quantity TEXT,
            price TEXT,
            amount TEXT,
            source TEXT NOT NULL,
            ingested_at DATETIME NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS prices (
            security_id TEXT NOT NULL,
            date DATE NOT NULL,
            open TEXT,
            high TEXT,
            low TEXT,
            close TEXT NOT NULL,
            volume INTEGER,
            source TEXT NOT NULL,
            ingested_at DATETIME NOT NULL,
            PRIMARY KEY (security_id, date)
        )
    """)

    conn.execute("CREATE INDEX IF NOT EXISTS idx_positions_account_date ON positions(account_id, date)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_account_date ON transactions(account_id, date)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_prices_date ON prices(date)")

    conn.commit()


def get_connection(db_path: str = './data/portfolio.db') -> sqlite3.Connection:
    """
    Get SQLite connection with proper configuration.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Configured SQLite connection
    """
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")  # Better concurrency
    return conn


def _to_db_value(value: Any) -> Any:
    """Convert a Python value to its stored representation."""
    if isinstance(value, datetime):
        return value.isoformat(sep=' ')
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, float):
        return str(value)
    return value


def _upsert(conn: sqlite3.Connection, table: str, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Upsert rows into a table by its natural key.

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if not rows:
        return (0, 0)

    key_columns = TABLE_KEYS[table]
    columns = TABLE_COLUMNS[table]
    value_columns = [c for c in columns if c not in key_columns]

    where_clause = ' AND '.join(f"{c} = ?" for c in key_columns)
    update_sql = f"UPDATE {table} SET {', '.join(f'{c} = ?' for c in value_columns)} WHERE {where_clause}"
    insert_sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})"

    inserted = 0
    updated = 0

    for row in rows:
        key_values = tuple(_to_db_value(row[c]) for c in key_columns)

        # Check if row exists (by natural key)
        cursor = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where_clause}", key_values)
        exists = cursor.fetchone()[0] > 0

        if exists:
            conn.execute(
                update_sql,
                tuple(_to_db_value(row.get(c)) for c in value_columns) + key_values
            )
            updated += 1
        else:
            conn.execute(insert_sql, tuple(_to_db_value(row.get(c)) for c in columns))
            inserted += 1

    conn.commit()
    return (inserted, updated)


def upsert_securities(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """Upsert security reference rows keyed by id."""
    return _upsert(conn, 'securities', rows)


def upsert_positions(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Upsert position rows keyed by (account_id, security_id, date).
    Idempotent - can be called multiple times with same data.

    Args:
        conn: SQLite connection
        rows: List of canonical position dictionaries

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    return _upsert(conn, 'positions', rows)


def upsert_transactions(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """Upsert transaction rows keyed by transaction_id."""
    return _upsert(conn, 'transactions', rows)


def upsert_prices(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """Upsert price rows keyed by (security_id, date)."""
    return _upsert(conn, 'prices', rows)


def _parse_dates(df: pd.DataFrame, column: str = 'date') -> pd.DataFrame:
    if not df.empty and column in df.columns:
        df[column] = pd.to_datetime(df[column]).dt.date
    return df


def query_positions(
    conn: sqlite3.Connection,
    account_id: str,
    end_date: Optional[date] = None
) -> pd.DataFrame:
    """
    Query an account's positions up to end_date.

    History before the reporting window is included so beginning values
    can be resolved.

    Returns:
        DataFrame with position rows ordered by date and security
    """
    query = """
        SELECT account_id, security_id, date, quantity, average_cost, market_value
        FROM positions
        WHERE account_id = ?
    """
    params = [account_id]

    if end_date is not None:
        query += " AND date <= ?"
        params.append(_to_db_value(end_date))

    query += " ORDER BY date ASC, security_id ASC"

    return _parse_dates(pd.read_sql_query(query, conn, params=params))


def query_transactions(
    conn: sqlite3.Connection,
    account_id: str,
    end_date: Optional[date] = None
) -> pd.DataFrame:
    """
    Query an account's transactions up to end_date.

    Returns:
        DataFrame with transaction rows ordered by date
    """
    query = """
        SELECT transaction_id, account_id, date, type, security_id, quantity, price, amount
        FROM transactions
        WHERE account_id = ?
    """
    params = [account_id]

    if end_date is not None:
        query += " AND date <= ?"
        params.append(_to_db_value(end_date))

    query += " ORDER BY date ASC, transaction_id ASC"

    return _parse_dates(pd.read_sql_query(query, conn, params=params))


def query_prices(
    conn: sqlite3.Connection,
    security_ids: Sequence[str],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> pd.DataFrame:
    """
    Query closing prices for a set of securities.

    Args:
        conn: SQLite connection
        security_ids: Securities to fetch
        start_date: Optional start date filter
        end_date: Optional end date filter

    Returns:
        DataFrame with price rows ordered by security and date
    """
    columns = ['security_id', 'date', 'open', 'high', 'low', 'close', 'volume']
    if not security_ids:
        return pd.DataFrame(columns=columns)

    placeholders = ', '.join('?' for _ in security_ids)
    query = f"""
        SELECT {', '.join(columns)}
        FROM prices
        WHERE security_id IN ({placeholders})
    """
    params = list(security_ids)

    if start_date is not None:
        query += " AND date >= ?"
        params.append(_to_db_value(start_date))

    if end_date is not None:
        query += " AND date <= ?"
        params.append(_to_db_value(end_date))

    query += " ORDER BY security_id ASC, date ASC"

    return _parse_dates(pd.read_sql_query(query, conn, params=params))


def query_securities(
    conn: sqlite3.Connection,
    security_ids: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """Query security reference data, optionally restricted to ids."""
    query = "SELECT id, symbol, name, asset_class, exchange, currency FROM securities"
    params: List[Any] = []

    if security_ids is not None:
        if not security_ids:
            return pd.DataFrame(columns=['id', 'symbol', 'name', 'asset_class', 'exchange', 'currency'])
        query += f" WHERE id IN ({', '.join('?' for _ in security_ids)})"
        params = list(security_ids)

    query += " ORDER BY id ASC"
    return pd.read_sql_query(query, conn, params=params)


def list_accounts(conn: sqlite3.Connection) -> List[str]:
    """All account ids with positions or transactions."""
    cursor = conn.execute("""
        SELECT account_id FROM positions
        UNION
        SELECT account_id FROM transactions
        ORDER BY account_id
    """)
    return [row[0] for row in cursor.fetchall()]
