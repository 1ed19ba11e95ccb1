"""容器命令执行：docker exec 封装，同一容器内严格串行"""

import asyncio
import base64
from typing import List, Optional

from .errors import TransportError
from .log import setup_logger
from .session import DesktopSession

logger = setup_logger("uidriver.shell")


class DockerShell:
    """
    在指定容器内执行命令。

    xdotool 依赖活动窗口与剪贴板等全局状态，并发执行会互相破坏前置条件，
    因此每条命令都要在 session.command_lock 下执行，拿到结果后才放行下一条。
    """

    def __init__(self, display: str = ":1", timeout_s: float = 30.0, docker_bin: str = "docker"):
        self.display = display
        self.timeout_s = timeout_s
        self.docker_bin = docker_bin

    def _argv(self, container: str, command: List[str]) -> List[str]:
        return [self.docker_bin, "exec", "-e", f"DISPLAY={self.display}", container, *command]

    async def _run(self, argv: List[str]) -> bytes:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransportError("Failed to start container command", detail=str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise TransportError(f"Container command timed out after {self.timeout_s}s", detail=" ".join(argv))

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            raise TransportError(f"Command failed: {' '.join(argv)}", detail=detail or f"exit {proc.returncode}")
        return stdout

    async def exec(self, session: DesktopSession, command: List[str]) -> str:
        async with session.command_lock:
            logger.debug("[exec] %s", " ".join(command))
            out = await self._run(self._argv(session.container, command))
        return out.decode(errors="replace")

    async def exec_bytes(self, session: DesktopSession, command: List[str]) -> bytes:
        async with session.command_lock:
            logger.debug("[exec] %s", " ".join(command))
            return await self._run(self._argv(session.container, command))

    async def bash(self, session: DesktopSession, script: str) -> str:
        return await self.exec(session, ["bash", "-c", script])

    async def screenshot(self, session: DesktopSession) -> Optional[str]:
        png = await self.exec_bytes(session, ["import", "-window", "root", "png:-"])
        if not png:
            return None
        return base64.b64encode(png).decode("ascii")

    async def is_running(self, container: str) -> bool:
        """容器本身是否在运行（不占用命令锁）"""
        out = await self._run(
            [self.docker_bin, "inspect", "-f", "{{.State.Running}}", container]
        )
        return out.decode().strip().lower() == "true"
