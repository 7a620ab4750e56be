"""Lighthouse CLI как инструмент аудита страниц."""
import asyncio
import json
import shutil
from typing import Any

from loguru import logger

from localbrowser.platforms.base import AnalysisTool, AnalysisToolAvailable, AnalysisToolUnavailable

DEFAULT_CATEGORIES = ["performance", "accessibility", "best-practices", "seo"]
DEFAULT_CHROME_FLAGS = [
    "--headless=new",
    "--disable-gpu",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-web-security",
    "--disable-features=IsolateOrigins,site-per-process",
]

# Хвост stderr в сообщении об ошибке
_STDERR_TAIL = 500


def build_cli_args(binary: str, url: str, options: dict[str, Any]) -> list[str]:
    """Собрать аргументы CLI. Списки склеиваются: категории через запятую, флаги Chrome через пробел."""
    args = [binary, url, "--output=json", "--output-path=stdout", "--quiet"]
    for key, value in options.items():
        if key in ("output", "outputPath") or value is None:
            continue
        if key == "onlyCategories":
            args.append(f"--only-categories={','.join(value)}")
        elif key == "chromeFlags":
            flags = value if isinstance(value, str) else " ".join(value)
            args.append(f"--chrome-flags={flags}")
        elif key == "logLevel":
            # --quiet уже задан; verbose-уровни перекрывают его
            if value in ("info", "verbose"):
                args.append(f"--{value}")
        elif isinstance(value, bool):
            if value:
                args.append(f"--{key}")
        else:
            args.append(f"--{key}={value}")
    return args


class LighthouseCli:
    """Запуск `lighthouse` как подпроцесса, отчёт читается из stdout."""

    def __init__(self, binary: str, chrome_port: int | None = None) -> None:
        self.binary = binary
        self.chrome_port = chrome_port

    def default_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "logLevel": "error",
            "onlyCategories": list(DEFAULT_CATEGORIES),
            "chromeFlags": list(DEFAULT_CHROME_FLAGS),
        }
        if self.chrome_port:
            options["port"] = self.chrome_port
        return options

    async def audit(self, url: str, options: dict[str, Any]) -> dict[str, Any] | None:
        merged = {**self.default_options(), **options}
        args = build_cli_args(self.binary, url, merged)
        logger.debug(f"[lighthouse] Running {' '.join(args)}")

        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Отмена снаружи (wait_for): подпроцесс с Chrome убиваем
            process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            tail = stderr.decode(errors="replace")[-_STDERR_TAIL:]
            raise RuntimeError(f"Lighthouse exited with code {process.returncode}: {tail}")

        if not stdout.strip():
            return None
        report = json.loads(stdout)
        return report if isinstance(report, dict) else None


def detect_lighthouse(binary: str = "lighthouse", chrome_port: int | None = None) -> AnalysisTool:
    """Проверить наличие Lighthouse CLI один раз при старте."""
    path = shutil.which(binary)
    if path is None:
        reason = f"Lighthouse CLI '{binary}' not installed. Install with: npm install -g lighthouse"
        logger.warning(f"[lighthouse] {reason}")
        return AnalysisToolUnavailable(reason=reason)
    logger.info(f"[lighthouse] Using {path}")
    return AnalysisToolAvailable(tool=LighthouseCli(path, chrome_port))
