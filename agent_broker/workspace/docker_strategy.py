"""
Docker 容器策略

每个执行环境对应一个容器，容器在同一会话的多次查询之间保持运行，
只有显式 destroy 时才停止（容器以 --rm 启动，停止后自动删除）。

流程：
1. 首次查询 -> prepare() 启动新容器，返回环境 ID
2. SDK 返回会话 ID -> associate(session_id, env_id)
3. 后续查询带 resume_session_id -> prepare(session_id) 复用同一容器
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..error_handling import EnvironmentProvisionError, UnsupportedOperationError
from ..logging_config import get_logger
from ..types import ExecutionEnvironment, FileUpload, IngestedFile, SessionStrategy
from .base import EnvironmentManager

logger = get_logger(__name__)

CONTAINER_WORKDIR = "/workspace"


@dataclass
class ContainerInfo:
    """容器引用与映射到宿主机的端口"""

    container_id: str
    port: int


class DockerEnvironmentManager(EnvironmentManager):
    """Docker 容器执行环境管理器"""

    strategy = SessionStrategy.DOCKER

    def __init__(
        self,
        image: str = "agent-starter-api",
        service_port: int = 3000,
        docker_bin: str = "docker"
    ):
        """
        Args:
            image: 容器镜像
            service_port: 容器内服务端口（用于查询映射端口）
            docker_bin: docker 可执行文件
        """
        super().__init__()
        self.image = image
        self.service_port = service_port
        self.docker_bin = docker_bin
        self._containers: Dict[str, ContainerInfo] = {}

    def get_port(self, session_id: str) -> Optional[int]:
        """获取会话容器映射到宿主机的端口"""
        env_id = self._session_to_env.get(session_id, session_id)
        container = self._containers.get(env_id)
        return container.port if container else None

    async def _reuse(self, env_id: str) -> Optional[ExecutionEnvironment]:
        if env_id not in self._containers:
            return None
        return ExecutionEnvironment(env_id=env_id, cwd=CONTAINER_WORKDIR)

    async def _provision(self, env_id: str) -> ExecutionEnvironment:
        stdout = await self._run_docker(
            "run",
            "-d",
            "--rm",
            "--name", f"agent-session-{env_id}",
            "--label", f"agent-session={env_id}",
            "-w", CONTAINER_WORKDIR,
            # 从当前进程环境透传，不把密钥写进命令行
            "-e", "ANTHROPIC_API_KEY",
            "-P",
            self.image,
        )
        container_id = stdout.strip()
        if not container_id:
            raise EnvironmentProvisionError("docker run 未返回容器 ID", env_id=env_id)

        try:
            port_info = await self._run_docker("port", container_id, str(self.service_port))
            port = self._parse_port(port_info, env_id)
        except EnvironmentProvisionError:
            self._containers[env_id] = ContainerInfo(container_id=container_id, port=0)
            await self._release(env_id)
            raise

        self._containers[env_id] = ContainerInfo(container_id=container_id, port=port)
        logger.info(f"启动容器: {container_id[:12]} (env={env_id}, port={port})")
        return ExecutionEnvironment(env_id=env_id, cwd=CONTAINER_WORKDIR)

    async def _release(self, env_id: str) -> None:
        container = self._containers.pop(env_id, None)
        if container is None:
            return

        try:
            await self._run_docker("stop", container.container_id)
            logger.info(f"停止容器: {container.container_id[:12]} (env={env_id})")
        except EnvironmentProvisionError as e:
            # --rm 启动的容器可能已经被删除
            logger.warning(f"停止容器失败，视为已删除: {e}")

    async def ingest_files(self, env_id: str, files: List[FileUpload]) -> List[IngestedFile]:
        """需要向容器服务端口传输文件，目前未实现"""
        raise UnsupportedOperationError(
            "File upload is not yet implemented for the docker session strategy",
            strategy=self.strategy.value
        )

    async def _run_docker(self, *args: str) -> str:
        """
        执行 docker 命令并返回标准输出

        Raises:
            EnvironmentProvisionError: 命令无法启动或返回非零退出码
        """
        logger.debug(f"执行: {self.docker_bin} {' '.join(args)}")
        try:
            process = await asyncio.create_subprocess_exec(
                self.docker_bin,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EnvironmentProvisionError(f"无法执行 {self.docker_bin}: {e}")

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            stderr_text = stderr.decode(errors="replace").strip() if stderr else ""
            raise EnvironmentProvisionError(
                f"docker {args[0]} 失败 (exit {process.returncode}): {stderr_text}"
            )
        return stdout.decode(errors="replace") if stdout else ""

    @staticmethod
    def _parse_port(port_info: str, env_id: str) -> int:
        """解析 `docker port` 输出（如 0.0.0.0:49153）中的宿主机端口"""
        lines = [line.strip() for line in port_info.splitlines() if line.strip()]
        if not lines:
            raise EnvironmentProvisionError("无法获取容器映射端口", env_id=env_id)
        try:
            return int(lines[0].rsplit(":", 1)[-1])
        except ValueError:
            raise EnvironmentProvisionError(f"无法解析容器端口: {lines[0]}", env_id=env_id)
