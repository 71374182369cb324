from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from models import Base
import config


def get_engine(url: str = None):
    """Создает движок базы данных"""
    url = url or config.DATABASE_URL
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def get_session(url: str = None):
    """Создает и возвращает фабрику сессий SQLAlchemy и движок базы данных"""
    engine = get_engine(url)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    return session_factory, engine


def init_tables(engine):
    """Инициализирует таблицы базы данных"""
    Base.metadata.create_all(engine)
