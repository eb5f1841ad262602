# live_articles/deps.py
from __future__ import annotations

import logging
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from . import config

logger = logging.getLogger(__name__)

# 按 DATABASE_URL 初始化；测试通过 build_engine 另建临时库
engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def build_engine(url: str) -> tuple[Engine, sessionmaker]:
    is_sqlite = url.startswith("sqlite")
    connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}

    # 测试和线上共用连接池配置，SQLite 只多出 connect_args
    eng = create_engine(
        url,
        connect_args=connect_args,
        poolclass=QueuePool,
        pool_size=config.POOL_SIZE,
        max_overflow=config.MAX_OVERFLOW,
        pool_pre_ping=True,
        future=True,
    )

    if is_sqlite:
        @event.listens_for(eng, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            # WAL 让点赞/收藏的并发写不阻塞读
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA synchronous=NORMAL;")
            # 级联删除依赖外键约束
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.execute("PRAGMA busy_timeout=10000;")
            cur.close()

    session_cls = sessionmaker(bind=eng, autoflush=False, autocommit=False, expire_on_commit=False)
    return eng, session_cls


def _init_engine() -> None:
    global engine, SessionLocal
    engine, SessionLocal = build_engine(config.DATABASE_URL)
    logger.info("using database %s", engine.url.render_as_string(hide_password=True))


_init_engine()


def get_db() -> Generator[Session, None, None]:
    """每个请求一个会话，请求结束即关闭"""
    if SessionLocal is None:
        raise RuntimeError("database engine is not configured")
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
