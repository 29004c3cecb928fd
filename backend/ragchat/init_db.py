from sqlalchemy.engine import Engine

from ragchat.core.database import engine, Base
from ragchat.models import chat  # noqa: F401  registers the tables


def init_db(db_engine: Engine = engine):
    Base.metadata.create_all(bind=db_engine)


if __name__ == "__main__":
    init_db()
