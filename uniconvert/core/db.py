import os
from sqlmodel import SQLModel, create_engine


def create_db_engine(database_url: str):
    """create an engine; sqlite needs cross-thread access for the api threadpool"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


def init_db(engine):
    # register table models before create_all
    from uniconvert import models  # noqa: F401

    url = engine.url
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)
    SQLModel.metadata.create_all(engine)
