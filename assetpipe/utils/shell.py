"""外部转换工具调用

postcss / esbuild 都以子进程运行，统一经过 CommandExecutor：
流水线只依赖协议，测试注入 fake 实现即可，无需 patch subprocess。
run_cmd 把超时、找不到可执行文件、非零退出统一转换为 TransformError。
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from typing import Protocol

from assetpipe.core.exceptions import TransformError

logger = logging.getLogger(__name__)

# 错误信息中保留的 stderr 长度
STDERR_LIMIT = 500


@dataclass
class CommandResult:
    """一次外部命令执行的结果"""

    returncode: int
    stdout: str
    stderr: str
    command: list[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def stderr_excerpt(self, limit: int = STDERR_LIMIT) -> str:
        text = self.stderr.strip()
        return text if len(text) <= limit else text[:limit] + "..."


class CommandExecutor(Protocol):
    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """本地子进程执行器

    超时抛 subprocess.TimeoutExpired，可执行文件不存在抛 FileNotFoundError。
    """

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        r = subprocess.run(
            cmd, capture_output=True, text=True,
            cwd=cwd, env=env, check=False, timeout=timeout,
        )
        return CommandResult(returncode=r.returncode, stdout=r.stdout, stderr=r.stderr, command=list(cmd))


def split_command(command: str | list[str]) -> list[str]:
    """把配置中的命令前缀（如 "npx esbuild"）拆成参数列表"""
    return shlex.split(command) if isinstance(command, str) else list(command)


def _missing_binary_hint(cmd: list[str]) -> str:
    if cmd and shutil.which(cmd[0]) is None:
        return f"（未找到 {cmd[0]}，请确认 Node.js 工具链已安装）"
    return ""


def run_cmd(
    cmd: list[str],
    *,
    executor: CommandExecutor,
    cwd: str = ".",
    env: dict[str, str] | None = None,
    timeout: int | None = None,
    pipeline: str = "",
    source: str = "",
    label: str = "cmd",
) -> CommandResult:
    """执行外部转换命令，失败时抛 TransformError（带 stderr 摘要）"""
    logger.info("  %s: %s", label, shlex.join(cmd), extra={"pipeline": pipeline or None})
    start = time.monotonic()
    try:
        r = executor.execute(cmd, cwd=cwd, env=env, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise TransformError(f"{label}超时（{timeout}秒）", pipeline=pipeline, source=source) from e
    except OSError as e:
        raise TransformError(
            f"{label}无法启动: {e}{_missing_binary_hint(cmd)}", pipeline=pipeline, source=source,
        ) from e
    r.duration = time.monotonic() - start
    logger.debug("  %s 用时 %.2fs (rc=%d)", label, r.duration, r.returncode)
    if not r.success:
        raise TransformError(
            f"{label}失败 (rc={r.returncode}): {r.stderr_excerpt()}",
            pipeline=pipeline, source=source,
        )
    return r
