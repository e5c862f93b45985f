"""GradeFoundry - Container Sandbox (隔离后端)

为生成的测试提供容器级隔离能力（Docker/Podman）。

Features:
- 禁网 (--network none)
- 只读挂载 submission 与 tests，可写挂载 output
- 资源硬限制 (memory + 禁用 swap, cpus, pids)
- 丢弃全部 capabilities，禁止提权
- 超时硬 kill (docker kill)，取消时同样 kill
- 按 (language, framework) 构建并缓存运行镜像

fallback: 若 docker 不可用，抛出 SandboxUnavailable，不降级执行。

Usage:
    backend = ContainerBackend()
    image = await backend.ensure_environment("python", "pytest")
    config = ContainerSandboxConfig(image=image)
    result = await backend.execute(cmd, config=config, submission_path=..., tests_path=..., output_path=...)
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import time
import uuid
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from gradefoundry.core.config import settings
from gradefoundry.core.errors import SandboxUnavailable
from gradefoundry.services.generation.frameworks import (
    OUTPUT_MOUNT,
    SUBMISSION_MOUNT,
    TESTS_MOUNT,
    get_framework,
)

logger = logging.getLogger(__name__)

_MEM_USAGE_RE = re.compile(r"^\s*([\d.]+)\s*([KMG]i?B|B)", re.IGNORECASE)
_MEM_UNITS_MB = {
    "b": 1 / (1024 * 1024),
    "kb": 1 / 1024, "kib": 1 / 1024,
    "mb": 1.0, "mib": 1.0,
    "gb": 1024.0, "gib": 1024.0,
}


class ContainerSandboxConfig(BaseModel):
    """容器沙箱配置

    默认值与 policy.sandbox 对齐。
    """

    image: str = Field(description="Docker 镜像名称")
    timeout_s: int = Field(default=60, ge=1, description="硬超时（秒）")
    memory_limit: str = Field(default="512m", description="内存硬限制（docker 格式）")
    cpus: float = Field(default=1.0, ge=0.1, description="CPU 核数限制")
    pids_limit: int = Field(default=128, ge=10, description="进程数限制")
    network_disabled: bool = Field(default=True, description="禁用网络")
    sample_stats: bool = Field(default=True, description="运行期间采样内存占用")


class ContainerSandboxResult(BaseModel):
    """容器沙箱执行结果"""

    exit_code: int = Field(description="容器退出码")
    stdout: str = Field(default="", description="标准输出")
    stderr: str = Field(default="", description="标准错误")
    elapsed_ms: int = Field(default=0, description="执行耗时（毫秒）")
    killed_by_timeout: bool = Field(default=False, description="是否因超时被杀死")
    container_id: Optional[str] = Field(default=None, description="容器名称")
    image: Optional[str] = Field(default=None, description="运行镜像")
    image_hash: Optional[str] = Field(default=None, description="镜像 SHA256 (短)")
    peak_memory_mb: Optional[float] = Field(default=None, description="采样到的峰值内存（MB）")


def _detect_container_runtime() -> Optional[str]:
    """检测可用的容器运行时

    Returns:
        "docker" | "podman" | None
    """
    candidates = [settings.CONTAINER_RUNTIME] if settings.CONTAINER_RUNTIME else ["docker", "podman"]
    for runtime in candidates:
        if shutil.which(runtime):
            return runtime
    return None


async def _run_cli(*args: str, timeout: float = 30, stdin: Optional[bytes] = None) -> tuple[int, str, str]:
    """执行容器运行时 CLI 命令"""
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(stdin), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        if proc.returncode is None:
            proc.kill()
        await proc.wait()
        raise
    return (
        proc.returncode if proc.returncode is not None else -1,
        stdout.decode("utf-8", errors="replace") if stdout else "",
        stderr.decode("utf-8", errors="replace") if stderr else "",
    )


async def check_runtime() -> str:
    """确认容器运行时可用（`docker info` 成功）

    Raises:
        SandboxUnavailable: 未安装或守护进程不可达
    """
    runtime = _detect_container_runtime()
    if runtime is None:
        raise SandboxUnavailable("Container runtime (docker/podman) not found")

    try:
        code, _, stderr = await _run_cli(runtime, "info", "--format", "{{.ServerVersion}}", timeout=15)
    except (asyncio.TimeoutError, OSError) as e:
        raise SandboxUnavailable(f"Container runtime '{runtime}' is not responding: {e}") from e
    if code != 0:
        raise SandboxUnavailable(f"Container runtime '{runtime}' is not available: {stderr.strip()}")
    return runtime


async def _get_image_hash(runtime: str, image: str) -> Optional[str]:
    """获取镜像 SHA256 (前16位) 用于审计；镜像不存在返回 None"""
    try:
        code, stdout, _ = await _run_cli(runtime, "image", "inspect", "--format", "{{.Id}}", image, timeout=10)
    except (asyncio.TimeoutError, OSError) as e:
        logger.debug(f"Image inspect failed for {image}: {e}")
        return None
    if code != 0:
        return None
    full_hash = stdout.strip()
    # 格式: sha256:abc123... -> 取前16位
    if ":" in full_hash:
        return full_hash.split(":")[1][:16]
    return full_hash[:16]


def image_tag(language: str, framework: str, prefix: str = "gradefoundry-runner") -> str:
    """运行镜像 tag，按 (language, framework) 区分"""
    return f"{prefix}-{language.lower()}-{framework.lower()}:latest"


# 已确认存在的镜像（进程内缓存）；构建过程按 tag 加锁避免并发重复构建
_ready_images: set[str] = set()
_image_locks: dict[str, asyncio.Lock] = {}


async def ensure_image(runtime: str, tag: str, dockerfile: str, *, timeout_s: int = 600) -> str:
    """确保运行镜像存在，不存在时用 Dockerfile 构建

    Raises:
        SandboxUnavailable: 构建失败
    """
    if tag in _ready_images:
        return tag

    lock = _image_locks.setdefault(tag, asyncio.Lock())
    async with lock:
        if tag in _ready_images:
            return tag

        if await _get_image_hash(runtime, tag) is None:
            logger.info(f"Building sandbox image {tag}")
            try:
                code, _, stderr = await _run_cli(
                    runtime, "build", "-t", tag, "-",
                    timeout=timeout_s,
                    stdin=dockerfile.encode("utf-8"),
                )
            except (asyncio.TimeoutError, OSError) as e:
                raise SandboxUnavailable(f"Failed to build image {tag}: {e}") from e
            if code != 0:
                raise SandboxUnavailable(f"Failed to build image {tag}: {stderr.strip()[-2000:]}")

        _ready_images.add(tag)
        return tag


def clear_image_cache() -> None:
    """清除镜像缓存（用于测试）"""
    _ready_images.clear()
    _image_locks.clear()


def _parse_mem_usage(text: str) -> Optional[float]:
    """解析 `docker stats` 的 MemUsage 字段，如 "12.5MiB / 512MiB" """
    match = _MEM_USAGE_RE.match(text)
    if not match:
        return None
    factor = _MEM_UNITS_MB.get(match.group(2).lower())
    if factor is None:
        return None
    return round(float(match.group(1)) * factor, 2)


async def _sample_memory(runtime: str, container_name: str, peak: list[float]) -> None:
    """运行期间持续采样内存，记录峰值（尽力而为）"""
    while True:
        await asyncio.sleep(1)
        try:
            code, stdout, _ = await _run_cli(
                runtime, "stats", "--no-stream", "--format", "{{.MemUsage}}", container_name,
                timeout=5,
            )
        except (asyncio.TimeoutError, OSError):
            continue
        if code == 0:
            value = _parse_mem_usage(stdout)
            if value is not None:
                peak.append(value)


async def _kill_container(runtime: str, container_name: str) -> None:
    try:
        await _run_cli(runtime, "kill", container_name, timeout=5)
    except (asyncio.TimeoutError, OSError) as e:
        logger.warning(f"Failed to kill container {container_name}: {e}")


def build_run_command(
    runtime: str,
    container_name: str,
    cmd: list[str],
    *,
    config: ContainerSandboxConfig,
    submission_path: Path,
    tests_path: Path,
    output_path: Path,
    env_vars: Optional[dict[str, str]] = None,
) -> list[str]:
    """构建 docker run 命令"""
    docker_cmd = [
        runtime, "run",
        "--name", container_name,
        "--rm",  # 自动清理
        # 资源限制（memory-swap 与 memory 相同即禁用 swap）
        f"--memory={config.memory_limit}",
        f"--memory-swap={config.memory_limit}",
        f"--cpus={config.cpus}",
        f"--pids-limit={config.pids_limit}",
        # 安全
        "--security-opt", "no-new-privileges",
        "--cap-drop=ALL",
        "--tmpfs", "/tmp:rw,size=64m",
    ]

    # 禁网
    if config.network_disabled:
        docker_cmd.append("--network=none")

    # 挂载
    docker_cmd.extend(["-v", f"{submission_path.absolute()}:{SUBMISSION_MOUNT}:ro"])
    docker_cmd.extend(["-v", f"{tests_path.absolute()}:{TESTS_MOUNT}:ro"])
    docker_cmd.extend(["-v", f"{output_path.absolute()}:{OUTPUT_MOUNT}:rw"])

    # 工作目录
    docker_cmd.extend(["-w", SUBMISSION_MOUNT])

    # 环境变量
    if env_vars:
        for k, v in env_vars.items():
            docker_cmd.extend(["-e", f"{k}={v}"])

    # 镜像和命令
    docker_cmd.append(config.image)
    docker_cmd.extend(cmd)
    return docker_cmd


async def run_in_container(
    cmd: list[str],
    *,
    config: ContainerSandboxConfig,
    submission_path: Path,
    tests_path: Path,
    output_path: Path,
    env_vars: Optional[dict[str, str]] = None,
) -> ContainerSandboxResult:
    """在容器中执行命令

    Args:
        cmd: 命令参数列表（在容器内执行）
        config: 容器沙箱配置
        submission_path: 提交代码（只读挂载到 /submission）
        tests_path: 测试文件（只读挂载到 /tests）
        output_path: 输出目录（可写挂载到 /output）
        env_vars: 传递给容器的环境变量

    Returns:
        ContainerSandboxResult

    Raises:
        SandboxUnavailable: 如果 docker/podman 不可用
    """
    start_time = time.monotonic()

    # 1. 检查容器运行时
    runtime = _detect_container_runtime()
    if runtime is None:
        raise SandboxUnavailable("Container runtime (docker/podman) not found")

    # 2. 确保输出目录存在
    output_path.mkdir(parents=True, exist_ok=True)

    # 3. 获取镜像 hash（用于审计）
    image_hash = await _get_image_hash(runtime, config.image)

    # 4. 构建 docker run 命令
    container_name = f"gf-sandbox-{uuid.uuid4().hex[:12]}"
    docker_cmd = build_run_command(
        runtime,
        container_name,
        cmd,
        config=config,
        submission_path=submission_path,
        tests_path=tests_path,
        output_path=output_path,
        env_vars=env_vars,
    )

    logger.info(
        f"Container sandbox: {runtime} run {config.image} name={container_name} "
        f"(network={not config.network_disabled}, memory={config.memory_limit}, cpus={config.cpus})"
    )

    # 5. 执行
    killed_by_timeout = False
    peak: list[float] = []
    sampler: Optional[asyncio.Task] = None

    try:
        process = await asyncio.create_subprocess_exec(
            *docker_cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise SandboxUnavailable(f"Container runtime '{runtime}' not found in PATH") from e

    if config.sample_stats:
        sampler = asyncio.create_task(_sample_memory(runtime, container_name, peak))

    try:
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(),
                timeout=config.timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Container timeout after {config.timeout_s}s, killing {container_name}")
            killed_by_timeout = True
            await _kill_container(runtime, container_name)
            # 等待原进程结束
            try:
                await asyncio.wait_for(process.wait(), timeout=5)
            except asyncio.TimeoutError:
                process.kill()
            stdout_bytes = b""
            stderr_bytes = f"Container killed by timeout ({config.timeout_s}s)".encode()
        except asyncio.CancelledError:
            logger.warning(f"Container run cancelled, killing {container_name}")
            await _kill_container(runtime, container_name)
            if process.returncode is None:
                process.kill()
            raise
    finally:
        if sampler is not None:
            sampler.cancel()
            # 等待采样任务结束（其 stats 子进程已被 kill）
            await asyncio.gather(sampler, return_exceptions=True)

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    logger.info(
        f"Container {container_name} finished exit_code={process.returncode} "
        f"elapsed_ms={elapsed_ms} timeout={killed_by_timeout}"
    )

    return ContainerSandboxResult(
        exit_code=process.returncode if process.returncode is not None else -1,
        stdout=stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else "",
        stderr=stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else "",
        elapsed_ms=elapsed_ms,
        killed_by_timeout=killed_by_timeout,
        container_id=container_name,
        image=config.image,
        image_hash=image_hash,
        peak_memory_mb=max(peak) if peak else None,
    )


class ContainerBackend:
    """基于 docker/podman CLI 的隔离后端"""

    def __init__(self, image_prefix: str = "gradefoundry-runner"):
        self.image_prefix = image_prefix

    async def ensure_environment(self, language: str, framework: str) -> str:
        """检查运行时并返回 (language, framework) 对应的运行镜像"""
        runtime = await check_runtime()
        spec = get_framework(framework)
        return await ensure_image(runtime, image_tag(language, spec.name, self.image_prefix), spec.dockerfile)

    async def execute(
        self,
        cmd: list[str],
        *,
        config: ContainerSandboxConfig,
        submission_path: Path,
        tests_path: Path,
        output_path: Path,
        env_vars: Optional[dict[str, str]] = None,
    ) -> ContainerSandboxResult:
        return await run_in_container(
            cmd,
            config=config,
            submission_path=submission_path,
            tests_path=tests_path,
            output_path=output_path,
            env_vars=env_vars,
        )


def is_container_mode_available() -> bool:
    """检查容器运行时是否已安装（不检查守护进程）"""
    return _detect_container_runtime() is not None
