"""
Probes

The probe interface the engine depends on, the executor that adapts a
monitor into a probe call, and an HTTP probe.
"""

from __future__ import annotations

import asyncio
import re
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog
from bs4 import BeautifulSoup

from watchtower.monitoring.errors import ProbeError
from watchtower.monitoring.models import Monitor, MonitorType, ProbeResult

logger = structlog.get_logger(__name__)


class Probe(ABC):
    """
    Fetches a monitor's target and returns normalized data.

    Implementations may use HTTP, a headless browser or a vendor metrics
    API. They may raise ``ProbeError`` or return a failed result.
    """

    @abstractmethod
    async def run(self, monitor: Monitor, timeout: float) -> ProbeResult:
        """Probe the target once."""


class ProbeExecutor:
    """
    Runs the right probe for a monitor and normalizes the outcome.

    Never raises: every failure becomes a failed ``ProbeResult``.
    """

    def __init__(
        self,
        probes: dict[MonitorType, Probe] | None = None,
        default_probe: Probe | None = None,
        default_timeout: float = 30.0,
    ) -> None:
        """
        Initialize the executor.

        Args:
            probes: Probe per monitor type
            default_probe: Probe for non business-metric types without an entry
            default_timeout: Timeout when a monitor has none
        """
        self._probes = probes or {}
        self._default_probe = default_probe
        self._default_timeout = default_timeout

    def probe_for(self, monitor: Monitor) -> Probe | None:
        """Select the probe for a monitor's type."""
        probe = self._probes.get(monitor.type)
        if probe is None and not monitor.type.is_business_metric:
            probe = self._default_probe
        return probe

    async def run(self, monitor: Monitor) -> ProbeResult:
        """
        Probe a monitor, retrying transient failures up to ``monitor.retries`` times.

        Args:
            monitor: The monitor to probe

        Returns:
            Normalized probe result
        """
        probe = self.probe_for(monitor)
        if probe is None:
            return ProbeResult(
                success=False,
                error=f"No probe configured for monitor type {monitor.type.value}",
            )

        timeout = float(monitor.timeout or self._default_timeout)
        attempts = 1 + monitor.retries
        result: ProbeResult | None = None

        for attempt in range(1, attempts + 1):
            result, retryable = await self._attempt(probe, monitor, timeout)
            if result.success or not retryable:
                break
            if attempt < attempts:
                logger.debug(
                    "Probe attempt failed, retrying",
                    monitor_id=monitor.id,
                    attempt=attempt,
                    error=result.error,
                )

        assert result is not None
        result = self._apply_expectations(monitor, result)
        result.fields.setdefault("status_code", result.status_code)
        result.fields["response_time"] = result.response_time
        return result

    async def _attempt(
        self,
        probe: Probe,
        monitor: Monitor,
        timeout: float,
    ) -> tuple[ProbeResult, bool]:
        """One probe call. Returns the result and whether a failure is transient."""
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(probe.run(monitor, timeout), timeout=timeout)
            return result, not result.success
        except asyncio.TimeoutError:
            error = f"Probe timed out after {timeout:.0f}s"
            retryable = True
        except ProbeError as e:
            error = str(e)
            retryable = e.retryable
        except Exception as e:
            logger.warning("Probe raised unexpectedly", monitor_id=monitor.id, error=str(e))
            error = str(e) or type(e).__name__
            retryable = True

        return ProbeResult(
            success=False,
            response_time=(time.perf_counter() - start) * 1000,
            error=error,
        ), retryable

    @staticmethod
    def _apply_expectations(monitor: Monitor, result: ProbeResult) -> ProbeResult:
        """Turn a successful probe into a failure if the target is not in the expected state."""
        if not result.success:
            return result

        problems: list[str] = []
        if monitor.expected_status is not None and result.status_code != monitor.expected_status:
            problems.append(
                f"Expected status {monitor.expected_status}, got {result.status_code}"
            )

        content = str(result.fields.get("text") or result.fields.get("html") or "").lower()
        if monitor.expected_content and monitor.expected_content.lower() not in content:
            problems.append("Expected content not found")

        missing = [k for k in monitor.expected_keywords if k.lower() not in content]
        if missing:
            problems.append(f"Missing keywords: {', '.join(missing)}")

        if not problems:
            return result
        return result.model_copy(update={"success": False, "error": "; ".join(problems)})


# =============================================================================
# HTTP probe
# =============================================================================

_PRICE_PATTERN = re.compile(r"([$€£¥])?\s*(\d{1,3}(?:[,\s]\d{3})*(?:\.\d+)?|\d+(?:\.\d+)?)")
_CURRENCIES = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY"}


def _attr_value(value: Any) -> str:
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


def _parse_price(text: str) -> tuple[float, str] | None:
    match = _PRICE_PATTERN.search(text)
    if not match:
        return None
    amount = float(re.sub(r"[,\s]", "", match.group(2)))
    return amount, _CURRENCIES.get(match.group(1) or "", "USD")


def extract_page_fields(html: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Parse an HTML document into condition-addressable fields.

    Args:
        html: Page source
        options: Monitor probe options: ``selectors``, ``price_selectors``,
            ``metric_selectors`` (``{"name", "selector", "type"}``)

    Returns:
        Normalized fields
    """
    options = options or {}
    soup = BeautifulSoup(html, "html.parser")

    title = soup.title.get_text(strip=True) if soup.title else ""
    description_tag = soup.find("meta", attrs={"name": "description"})
    canonical = soup.find("link", rel="canonical")
    images = soup.find_all("img")

    fields: dict[str, Any] = {
        "title": title,
        "text": soup.get_text(" ", strip=True),
        "html": html,
        "seo": {
            "title": title,
            "meta_description": description_tag.get("content", "") if description_tag else "",
            "h1_tags": [h.get_text(strip=True) for h in soup.find_all("h1")],
            "h2_tags": [h.get_text(strip=True) for h in soup.find_all("h2")],
            "image_alt_tags": sum(1 for img in images if img.get("alt")),
            "total_images": len(images),
            "canonical_url": canonical.get("href") if canonical else None,
        },
    }

    elements: dict[str, Any] = {}
    for selector in options.get("selectors", []):
        found = soup.select(selector)
        first = found[0] if found else None
        elements[selector] = {
            "count": len(found),
            "text": first.get_text(" ", strip=True) if first else "",
            "attributes": {k: _attr_value(v) for k, v in first.attrs.items()} if first else {},
        }
    fields["elements"] = elements

    prices: list[dict[str, Any]] = []
    for selector in options.get("price_selectors", []):
        for el in soup.select(selector):
            text = el.get_text(" ", strip=True)
            parsed = _parse_price(text)
            if parsed:
                prices.append({
                    "selector": selector,
                    "price": parsed[0],
                    "currency": parsed[1],
                    "text": text,
                })
    fields["prices"] = prices

    metrics: list[dict[str, Any]] = []
    for spec in options.get("metric_selectors", []):
        el = soup.select_one(spec["selector"])
        if el is None:
            continue
        text = el.get_text(" ", strip=True)
        if spec.get("type") == "text":
            value: Any = text
        else:
            parsed = _parse_price(text)
            value = parsed[0] if parsed else 0
        metrics.append({
            "name": spec["name"],
            "value": value,
            "unit": spec.get("unit"),
            "selector": spec["selector"],
        })
    fields["metrics"] = metrics

    return fields


class HttpProbe(Probe):
    """Probes HTTP(S) targets with httpx and parses HTML responses."""

    def __init__(
        self,
        user_agent: str = "WatchTower Monitor/0.1",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._user_agent = user_agent
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(follow_redirects=True)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def run(self, monitor: Monitor, timeout: float) -> ProbeResult:
        client = await self._get_client()
        headers = {"User-Agent": f"{self._user_agent} ({monitor.id})", **monitor.headers}

        start = time.perf_counter()
        try:
            response = await client.request(
                monitor.method,
                monitor.url,
                headers=headers,
                content=monitor.body,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise ProbeError(f"Request timed out: {e}", retryable=True) from e
        except httpx.HTTPError as e:
            raise ProbeError(f"Request failed: {e}", retryable=True) from e
        elapsed_ms = (time.perf_counter() - start) * 1000

        content_type = response.headers.get("content-type", "")
        if "html" in content_type or not content_type:
            fields = extract_page_fields(response.text, monitor.probe_options)
        else:
            fields = {"text": response.text, "html": ""}

        fields["status_code"] = response.status_code
        fields["headers"] = dict(response.headers)
        fields["response_size"] = len(response.content)

        return ProbeResult(
            success=True,
            response_time=elapsed_ms,
            status_code=response.status_code,
            fields=fields,
        )
