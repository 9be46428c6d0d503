"""Column types shared by the reconciliation models.

Every type here renders on both SQLite (tests, local runs) and PostgreSQL.
"""
from sqlalchemy import JSON, Numeric
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

# Audit old/new values; JSONB is PostgreSQL-only
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = PG_UUID

# Unit cost of a product
MoneyType = Numeric(12, 2)

# Signed discrepancy x unit cost
ImpactType = Numeric(14, 2)
