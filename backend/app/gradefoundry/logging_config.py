import logging
import sys
from pathlib import Path
from typing import Optional

from gradefoundry.core.config import settings


def setup_logging(level: Optional[str] = None, log_dir: Optional[str] = None, *, to_file: bool = True):
    """配置日志（级别与目录默认取 GF_LOG_LEVEL / GF_LOG_DIR）"""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if to_file:
        path = Path(log_dir or settings.LOG_DIR)
        path.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(path / "app.log", encoding="utf-8"))

    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    # 设置第三方库的日志级别
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger = logging.getLogger("gradefoundry")
    logger.info("日志服务已启动")
    return logger
