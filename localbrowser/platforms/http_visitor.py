"""Простой исполнитель visit() поверх httpx: скачать HTML и сохранить в локальное хранилище.

Без рендеринга JS — waitUntil игнорируется. Полноценный браузер подключается
через тот же интерфейс BrowserAutomation.
"""
import asyncio
import secrets
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

MAX_PAGE_SIZE = 20 * 1024 * 1024  # 20 МБ

# Множители таймаута для progressive retry
PROGRESSIVE_TIMEOUT_STEPS = (1.0, 1.5, 2.0)

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


class CloudflareChallengeError(Exception):
    """Страница отдала Cloudflare challenge — без браузера не пройти."""


def _is_cloudflare_challenge(response: httpx.Response) -> bool:
    if response.status_code not in (403, 503):
        return False
    if "cf-ray" not in response.headers and "cloudflare" not in response.headers.get("server", "").lower():
        return False
    text = response.text[:5000]
    return "Just a moment" in text or "challenge-platform" in text


class HttpPageVisitor:
    """Реализация BrowserAutomation для storageType=local."""

    def __init__(
        self,
        storage_dir: str | Path,
        public_base_url: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.storage_dir = Path(storage_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self._client = client

    async def visit(self, url: str, options: dict[str, Any]) -> dict[str, Any]:
        timeout_s = float(options.get("timeout", 60_000)) / 1000
        steps = PROGRESSIVE_TIMEOUT_STEPS if options.get("useProgressiveRetry", True) else (1.0,)

        own_client = self._client is None
        client = self._client or httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT}, follow_redirects=True
        )
        try:
            response = await self._fetch_with_retry(client, url, timeout_s, steps)
        finally:
            if own_client:
                await client.aclose()

        if options.get("handleCloudflare", True) and _is_cloudflare_challenge(response):
            raise CloudflareChallengeError(f"Cloudflare challenge detected for {url}")
        response.raise_for_status()

        if len(response.content) > MAX_PAGE_SIZE:
            raise ValueError(f"Page too large ({len(response.content)} bytes): {url}")

        if not options.get("saveToFile", True):
            return {"url": str(response.url), "html": response.text}
        return await self._save(url, str(response.url), response.content)

    async def _fetch_with_retry(
        self,
        client: httpx.AsyncClient,
        url: str,
        timeout_s: float,
        steps: tuple[float, ...],
    ) -> httpx.Response:
        last_error: Exception | None = None
        for attempt, factor in enumerate(steps, start=1):
            try:
                return await client.get(url, timeout=timeout_s * factor)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = e
                logger.warning(
                    f"[http_visitor] Attempt {attempt}/{len(steps)} failed for {url}: {e!r}"
                )
        raise RuntimeError(f"Failed to load {url} after {len(steps)} attempts: {last_error!r}")

    async def _save(self, url: str, final_url: str, content: bytes) -> dict[str, Any]:
        file_id = secrets.token_hex(16)
        filename = f"{file_id}.html"
        path = self.storage_dir / filename

        def _write() -> None:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        await asyncio.to_thread(_write)
        logger.debug(f"[http_visitor] Saved {len(content)} bytes → {path}")

        return {
            "fileId": file_id,
            "storageType": "local",
            "filename": filename,
            "size": len(content),
            "url": url,
            "finalUrl": final_url,
            "downloadUrl": f"{self.public_base_url}/files/{filename}",
            "viewUrl": f"{self.public_base_url}/files/{filename}?view=1",
            "savedAt": datetime.now(UTC).isoformat(),
        }
