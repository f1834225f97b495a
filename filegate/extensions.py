from sqlalchemy import event
from sqlalchemy.orm import declarative_base, scoped_session, sessionmaker

Base = declarative_base()


def init_db_session(engine):
    """Configure and return a scoped DB session bound to engine."""
    if engine.dialect.name == 'sqlite':
        # sqlite leaves FK enforcement off per connection
        @event.listens_for(engine, 'connect')
        def _enable_foreign_keys(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

    return scoped_session(sessionmaker(bind=engine, expire_on_commit=False))
