"""
Azure Dynamic Sessions 策略

代码执行委托给 Azure Container Apps 动态会话（REST API）。
同一个 identifier 总是路由到同一个远程容器，所以直接用环境 ID 作为 identifier；
prepare() 不创建任何本地资源，远程容器在第一次执行请求时由 Azure 分配，
空闲冷却期后自动回收，因此 destroy() 只删除本地映射。
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from ..error_handling import ConfigError, SandboxExecutionError
from ..logging_config import get_logger
from ..types import ExecutionEnvironment, SessionStrategy
from .base import EnvironmentManager

logger = get_logger(__name__)

API_VERSION = "2024-10-02-preview"
DEFAULT_AUDIENCE = "https://dynamicsessions.io/.default"
SESSION_WORKDIR = "/workspace"

TokenProvider = Callable[[], Awaitable[str]]


@dataclass
class ExecutionResult:
    """远程执行结果"""

    status: str
    stdout: str = ""
    stderr: str = ""
    return_code: Optional[int] = None

    @classmethod
    def from_properties(cls, properties: Dict[str, Any]) -> "ExecutionResult":
        return cls(
            status=str(properties.get("status", "")),
            stdout=properties.get("stdout") or "",
            stderr=properties.get("stderr") or "",
            return_code=properties.get("returnCode"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "returnCode": self.return_code,
        }


def _looks_like_timeout(status: Optional[int], body: str) -> bool:
    """根据响应形态推测是否为超时（服务端没有专门的超时状态码）"""
    if status in (408, 504):
        return True
    lowered = body.lower()
    return "timeout" in lowered or "timed out" in lowered


class AzureEnvironmentManager(EnvironmentManager):
    """Azure 动态会话执行环境管理器"""

    strategy = SessionStrategy.AZURE

    def __init__(
        self,
        pool_endpoint: Optional[str] = None,
        audience: str = DEFAULT_AUDIENCE,
        token_provider: Optional[TokenProvider] = None,
        request_timeout_margin: float = 15.0
    ):
        """
        Args:
            pool_endpoint: 会话池管理端点（必需）
            audience: 令牌受众
            token_provider: 返回 Bearer 令牌的协程函数（默认使用 DefaultAzureCredential）
            request_timeout_margin: HTTP 超时在执行超时基础上的额外余量（秒）

        Raises:
            ConfigError: 未配置会话池端点
        """
        super().__init__()
        if not pool_endpoint:
            raise ConfigError(
                "AZURE_SESSION_POOL_ENDPOINT is required for the azure session strategy"
            )
        self.pool_endpoint = pool_endpoint.rstrip("/")
        self.audience = audience
        self.request_timeout_margin = request_timeout_margin
        self._token_provider = token_provider
        self._credential = None

    async def _reuse(self, env_id: str) -> Optional[ExecutionEnvironment]:
        return ExecutionEnvironment(env_id=env_id, cwd=SESSION_WORKDIR)

    async def _provision(self, env_id: str) -> ExecutionEnvironment:
        return ExecutionEnvironment(env_id=env_id, cwd=SESSION_WORKDIR)

    async def _release(self, env_id: str) -> None:
        return None

    async def execute(
        self,
        session_id: str,
        code: Optional[str] = None,
        shell_command: Optional[str] = None,
        language: str = "bash",
        timeout_seconds: int = 30
    ) -> ExecutionResult:
        """
        在远程动态会话中执行代码或 shell 命令

        Args:
            session_id: SDK 会话 ID（没有映射时当作环境 ID）
            code: 要执行的代码
            shell_command: 要执行的 shell 命令
            language: 语言（默认 bash）
            timeout_seconds: 执行超时（秒）

        Returns:
            ExecutionResult

        Raises:
            SandboxExecutionError: HTTP 状态非 2xx、请求失败或超时、响应不是预期的 JSON 对象
        """
        env_id = self._session_to_env.get(session_id, session_id)
        token = await self._get_token()

        url = f"{self.pool_endpoint}/executions"
        params = {"api-version": API_VERSION, "identifier": env_id}
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }
        payload = {
            "properties": {
                "code": code,
                "shellCommand": shell_command,
                "language": language,
                "timeoutInSeconds": timeout_seconds,
            }
        }
        timeout = aiohttp.ClientTimeout(total=timeout_seconds + self.request_timeout_margin)

        logger.debug(f"远程执行: env={env_id}, language={language}")
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, params=params, headers=headers, json=payload) as resp:
                    if resp.status < 200 or resp.status >= 300:
                        error_text = await resp.text()
                        raise SandboxExecutionError(
                            f"Azure Dynamic Session execution failed ({resp.status}): {error_text}",
                            status_code=resp.status,
                            timed_out=_looks_like_timeout(resp.status, error_text)
                        )
                    data = await resp.json(content_type=None)
        except asyncio.TimeoutError:
            raise SandboxExecutionError(
                f"Azure Dynamic Session execution timed out after {timeout_seconds}s",
                timed_out=True
            )
        except aiohttp.ClientError as e:
            raise SandboxExecutionError(f"Azure Dynamic Session request failed: {e}") from e
        except ValueError as e:
            raise SandboxExecutionError(f"Azure Dynamic Session returned invalid JSON: {e}") from e

        properties = data.get("properties") if isinstance(data, dict) else None
        if not isinstance(properties, dict):
            raise SandboxExecutionError(
                f"Azure Dynamic Session returned an unexpected response: {data!r}"
            )
        result = ExecutionResult.from_properties(properties)
        logger.info(f"远程执行完成: env={env_id}, status={result.status}, returnCode={result.return_code}")
        return result

    async def close(self) -> None:
        """关闭 Azure 凭据"""
        if self._credential is not None:
            await self._credential.close()
            self._credential = None

    async def _get_token(self) -> str:
        if self._token_provider is None:
            # azure-identity 是可选依赖，仅在使用该策略时导入
            from azure.identity.aio import DefaultAzureCredential

            self._credential = DefaultAzureCredential()

            async def provider() -> str:
                token = await self._credential.get_token(self.audience)
                return token.token

            self._token_provider = provider
        return await self._token_provider()
