from .postgresqlinstance import PostgresqlInstanceController

__all__ = [
    "PostgresqlInstanceController",
]
