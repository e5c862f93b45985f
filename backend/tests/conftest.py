"""
GradeFoundry 测试配置

统一管理测试数据库初始化，确保所有模型都被导入和注册；
生成模型与沙箱后端默认替换为脚本化替身，测试不会访问网络或容器运行时。
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from gradefoundry.api.deps.pipeline_deps import get_sandbox_executor, get_text_generator
from gradefoundry.database.config import Base, get_db, get_session_factory
from gradefoundry.database import models  # noqa: F401 - 注册模型
from gradefoundry.execution.container_sandbox import clear_image_cache
from gradefoundry.execution.runner import SandboxExecutor
from gradefoundry.governance.policy_loader import clear_policy_cache
from gradefoundry.main import app

from pipeline_fakes import FakeBackend, ScriptedGenerator

# 使用文件数据库进行测试（内存数据库有连接隔离问题）
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """覆盖数据库依赖"""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


def override_get_session_factory():
    """后台任务使用测试数据库"""
    return TestingSessionLocal


@pytest.fixture
def db():
    """提供数据库会话"""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def generator():
    """脚本化生成模型（测试内向 generator.responses 追加响应）"""
    return ScriptedGenerator([])


@pytest.fixture
def backend():
    """默认返回通过结果的隔离后端替身"""
    return FakeBackend()


@pytest.fixture
def executor(backend, tmp_path):
    """使用替身后端的沙箱执行器，临时目录放在 tmp_path 下便于检查清理"""
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    return SandboxExecutor(backend=backend, work_dir=str(work_dir))


@pytest.fixture(autouse=True)
def apply_overrides(generator, executor):
    """每个测试自动应用依赖覆盖，并在结束后恢复"""
    old_overrides = app.dependency_overrides.copy()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = override_get_session_factory
    app.dependency_overrides[get_text_generator] = lambda: generator
    app.dependency_overrides[get_sandbox_executor] = lambda: executor

    yield

    app.dependency_overrides = old_overrides


@pytest.fixture(autouse=True)
def setup_database():
    """每个测试前创建所有表，测试后清理"""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_caches(monkeypatch):
    """策略与镜像缓存不跨测试共享"""
    monkeypatch.delenv("GF_POLICY_PATH", raising=False)
    clear_policy_cache()
    clear_image_cache()
    yield
    clear_policy_cache()
    clear_image_cache()


@pytest.fixture
def client():
    """提供测试客户端"""
    from fastapi.testclient import TestClient
    return TestClient(app)


@pytest.fixture
def submission_dir(tmp_path):
    """最小的 Python 提交目录"""
    path = tmp_path / "submission"
    path.mkdir()
    (path / "app.py").write_text(
        "from http.server import BaseHTTPRequestHandler, HTTPServer\n\n\n"
        "def create_server(port=8000):\n"
        "    return HTTPServer(('127.0.0.1', port), BaseHTTPRequestHandler)\n",
        encoding="utf-8",
    )
    return path
