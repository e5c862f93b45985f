"""GradeFoundry - Database Configuration

数据库连接配置
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from gradefoundry.core.config import settings

# 创建 Base 类
Base = declarative_base()

# 数据库 URL (GF_DB_URL 环境变量)
DATABASE_URL = settings.DB_URL

# 创建引擎
engine = create_engine(
    DATABASE_URL,
    # SQLite 特殊配置
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
)

# 创建 Session 工厂
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """创建全部数据表"""
    from gradefoundry.database import models  # noqa: F401  注册模型

    Base.metadata.create_all(bind=engine)


def get_db():
    """获取数据库会话（依赖注入）"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """后台任务使用的 Session 工厂（依赖注入，测试可覆盖）"""
    return SessionLocal
