# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()


def enable_sqlite_savepoints(engine) -> None:
    """
    Take transaction control away from pysqlite so SAVEPOINT works.

    pysqlite defers BEGIN until the first DML statement, which means a
    SAVEPOINT can silently become the outermost transaction. We disable the
    driver's handling and emit BEGIN IMMEDIATE ourselves; writers on SQLite
    serialize on the database lock instead of failing mid-transaction.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
