"""End-to-end self-test harness for the Kraken gateway.

The harness replays a fixed sequence of HTTP probes against a running gateway
(or, in-process, against the ASGI application itself) and records whether
each probe answered with the status it is expected to.  Reports can be
rendered as JSON, a compact text summary, or a standalone HTML page.

Run it from a shell with ``kraken-gateway-selftest --base-url http://host:3240``.
"""

from __future__ import annotations

import argparse
import asyncio
import html
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

TEST_PAIRS = ("XXBTZUSD", "XETHZUSD", "ADAUSD")
DEFAULT_BASE_URL = "http://localhost:3240"
DEFAULT_TIMEOUT = 10.0
MAX_TIMEOUT = 120.0
REPORT_FORMATS = ("json", "summary", "html")

# Balance, validate-only add-order and the dead man's switch need account
# permissions that a read-only key does not grant.
PERMISSION_BOUND_PROBES = 3

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class Probe:
    method: str
    endpoint: str
    description: str
    body: Optional[Dict[str, Any]] = None
    expected_status: int = 200


@dataclass
class CheckResult:
    endpoint: str
    method: str
    description: str
    status: str
    expected_status: int
    http_status: Optional[int] = None
    error: Any = None

    @property
    def passed(self) -> bool:
        return self.status == "PASS"

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "endpoint": self.endpoint,
            "method": self.method,
            "description": self.description,
            "status": self.status,
            "expected_status": self.expected_status,
            "http_status": self.http_status,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass
class SelfTestReport:
    results: List[CheckResult] = field(default_factory=list)
    logs: List[Dict[str, str]] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: _utcnow())
    allowed_failures: int = PERMISSION_BOUND_PROBES

    @property
    def passed(self) -> int:
        return sum(1 for result in self.results if result.passed)

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success_rate(self) -> float:
        if not self.total:
            return 0.0
        return round(self.passed / self.total * 100, 1)

    @property
    def healthy(self) -> bool:
        return self.failed <= self.allowed_failures

    def summary(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "total": self.total,
            "success_rate": self.success_rate,
            "status": "healthy" if self.healthy else "issues_detected",
        }

    def as_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary(),
            "results": [result.as_dict() for result in self.results],
            "logs": list(self.logs),
            "timestamp": self.timestamp,
        }


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_probes(pairs: Sequence[str] = TEST_PAIRS) -> List[Probe]:
    """Return the fixed probe sequence exercised by the harness."""

    primary = pairs[0]
    probes = [
        Probe("GET", "/health", "Health Check"),
        Probe("GET", "/api/time", "Server Time"),
        Probe("GET", "/api/system-status", "System Status"),
        Probe("GET", "/api/assets", "All Assets"),
        Probe("GET", "/api/assets?asset=XBT,ETH", "Specific Assets (XBT,ETH)"),
        Probe("GET", "/api/asset-pairs", "All Asset Pairs"),
        Probe("GET", f"/api/asset-pairs?pair={','.join(pairs[:2])}", "Specific Asset Pairs"),
    ]
    probes.extend(Probe("GET", f"/api/ticker?pair={pair}", f"Ticker for {pair}") for pair in pairs)
    probes.extend(
        Probe("GET", f"/api/ohlc?pair={pair}&interval=60", f"OHLC for {pair} (1h)")
        for pair in pairs[:2]
    )
    probes.extend(
        Probe("GET", f"/api/depth?pair={pair}&count=5", f"Order Book for {pair} (top 5)")
        for pair in pairs[:2]
    )
    probes.extend(
        [
            Probe("GET", f"/api/trades?pair={primary}", f"Recent Trades for {primary}"),
            Probe("GET", f"/api/spread?pair={primary}", f"Spread Data for {primary}"),
            Probe("GET", "/api/ticker", "Ticker without pair validation", expected_status=400),
            Probe("GET", "/api/balance", "Account Balance"),
            Probe(
                "POST",
                "/api/add-order",
                "Add Order (validation only)",
                body={
                    "pair": primary,
                    "type": "buy",
                    "ordertype": "limit",
                    "volume": "0.001",
                    "price": "30000",
                    "validate": True,
                },
            ),
            Probe(
                "POST",
                "/api/add-order",
                "Add Order (missing params)",
                body={},
                expected_status=400,
            ),
            Probe(
                "POST",
                "/api/cancel-order",
                "Cancel Order (missing txid)",
                body={},
                expected_status=400,
            ),
            Probe(
                "POST",
                "/api/cancel-all-orders-after",
                "Cancel All After (invalid timeout)",
                body={"timeout": 99999},
                expected_status=400,
            ),
            Probe(
                "POST",
                "/api/cancel-all-orders-after",
                "Cancel All After (disable timer)",
                body={"timeout": 0},
            ),
        ]
    )
    return probes


def _describe_keys(payload: Any) -> str:
    if isinstance(payload, dict):
        target = payload.get("result") if isinstance(payload.get("result"), dict) else payload
        keys = list(target.keys())
        suffix = "..." if len(keys) > 10 else ""
        return ", ".join(str(key) for key in keys[:10]) + suffix
    return type(payload).__name__


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class GatewaySelfTester:
    """Runs the probe sequence through an ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        probes: Optional[Iterable[Probe]] = None,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._probes = list(probes) if probes is not None else default_probes()
        self._report = SelfTestReport()

    def _log(self, message: str, level: str = "info") -> None:
        self._report.logs.append({"timestamp": _utcnow(), "level": level, "message": message})
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message)

    async def run_probe(self, probe: Probe) -> CheckResult:
        self._log(f"Testing: {probe.description}")
        self._log(f"{probe.method} {probe.endpoint}", "debug")
        request_kwargs: Dict[str, Any] = {}
        if probe.body is not None and probe.method == "POST":
            request_kwargs["json"] = probe.body
            self._log(f"Request body: {json.dumps(probe.body)}", "debug")

        result = CheckResult(
            endpoint=probe.endpoint,
            method=probe.method,
            description=probe.description,
            status="FAIL",
            expected_status=probe.expected_status,
        )
        try:
            response = await asyncio.wait_for(
                self._client.request(probe.method, probe.endpoint, **request_kwargs),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            result.error = f"timed out after {self._timeout:g}s"
            self._log(f"REQUEST ERROR: {result.error}", "error")
            return result
        except httpx.HTTPError as exc:
            result.error = str(exc) or type(exc).__name__
            self._log(f"REQUEST ERROR: {result.error}", "error")
            return result

        result.http_status = response.status_code
        body = _response_body(response)
        if response.status_code == probe.expected_status:
            result.status = "PASS"
            self._log(f"SUCCESS ({response.status_code})", "success")
            if response.status_code == 200:
                self._log(f"Response keys: {_describe_keys(body)}")
        else:
            result.error = body
            self._log(
                f"UNEXPECTED STATUS: {response.status_code} (expected {probe.expected_status})",
                "error",
            )
            self._log(f"Response: {json.dumps(body, default=str)}", "error")
        return result

    async def run(self) -> SelfTestReport:
        self._report = SelfTestReport()
        self._log("Kraken gateway self-test started")
        self._log(f"Target: {self._client.base_url}")
        for probe in self._probes:
            self._report.results.append(await self.run_probe(probe))

        report = self._report
        summary = report.summary()
        self._log(
            "Passed: {passed}, Failed: {failed}, Total: {total}, Success rate: {success_rate}%".format(
                **summary
            )
        )
        for result in report.results:
            if not result.passed:
                self._log(f"Failed: {result.method} {result.endpoint} - {result.description}", "error")
        self._log("Self-test completed")
        report.timestamp = _utcnow()
        return report


async def run_self_test(
    *,
    base_url: Optional[str] = None,
    app: Any = None,
    timeout: float = DEFAULT_TIMEOUT,
    probes: Optional[Iterable[Probe]] = None,
) -> SelfTestReport:
    """Run the probe sequence against *base_url*, or in-process against *app*."""

    if base_url is None and app is None:
        raise ValueError("Either base_url or app must be provided")

    transport = (
        httpx.ASGITransport(app=app, raise_app_exceptions=False) if base_url is None else None
    )
    async with httpx.AsyncClient(
        base_url=base_url or "http://gateway",
        transport=transport,
        timeout=timeout,
    ) as client:
        return await GatewaySelfTester(client, timeout=timeout, probes=probes).run()


def render_text(report: SelfTestReport) -> str:
    summary = report.summary()
    lines = [
        "=== SELF-TEST SUMMARY ===",
        f"Passed: {summary['passed']}",
        f"Failed: {summary['failed']}",
        f"Total: {summary['total']}",
        f"Success Rate: {summary['success_rate']}%",
        f"Status: {summary['status']}",
    ]
    failures = [result for result in report.results if not result.passed]
    if failures:
        lines.append("")
        lines.append("Failed Tests:")
        lines.extend(
            f"  {result.method} {result.endpoint} - {result.description}" for result in failures
        )
    return "\n".join(lines)


def render_html(report: SelfTestReport) -> str:
    summary = report.summary()
    rows = "".join(
        f"<tr class=\"{'pass' if result.passed else 'fail'}\">"
        f"<td>{html.escape(result.method)}</td>"
        f"<td>{html.escape(result.endpoint)}</td>"
        f"<td>{html.escape(result.description)}</td>"
        f"<td>{result.expected_status}</td>"
        f"<td>{'' if result.http_status is None else result.http_status}</td>"
        f"<td>{result.status}</td>"
        f"<td>{html.escape(json.dumps(result.error, default=str)) if result.error is not None else ''}</td>"
        "</tr>"
        for result in report.results
    )
    results_table = (
        "<table><thead><tr><th>Method</th><th>Endpoint</th><th>Description</th>"
        "<th>Expected</th><th>Status code</th><th>Result</th><th>Error</th></tr></thead>"
        f"<tbody>{rows}</tbody></table>"
        if report.results
        else "<p>No probes were executed.</p>"
    )
    status_class = "pass" if report.healthy else "fail"

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8" />
    <title>Kraken Gateway Self-Test</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 2rem; }}
        table {{ border-collapse: collapse; width: 100%; margin-bottom: 1.5rem; }}
        th, td {{ border: 1px solid #ddd; padding: 0.5rem; text-align: left; vertical-align: top; }}
        th {{ background-color: #f4f4f4; }}
        tr.pass td, span.pass {{ color: #1a7f37; }}
        tr.fail td, span.fail {{ color: #cf222e; }}
    </style>
</head>
<body>
    <h1>Kraken Gateway Self-Test</h1>
    <p>Run at {html.escape(report.timestamp)}</p>
    <h2>Summary</h2>
    <ul>
        <li>Passed: {summary['passed']}</li>
        <li>Failed: {summary['failed']}</li>
        <li>Total: {summary['total']}</li>
        <li>Success rate: {summary['success_rate']}%</li>
        <li>Status: <span class="{status_class}">{summary['status']}</span></li>
    </ul>
    <h2>Results</h2>
    {results_table}
</body>
</html>
"""


def render_report(report: SelfTestReport, report_format: str) -> str:
    if report_format == "json":
        return json.dumps(report.as_dict(), indent=2, default=str)
    if report_format == "summary":
        return render_text(report)
    if report_format == "html":
        return render_html(report)
    raise ValueError(f"Unsupported report format: {report_format!r}")


async def _gateway_reachable(base_url: str, timeout: float) -> bool:
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
        try:
            response = await client.get("/health")
        except httpx.HTTPError as exc:
            logger.error("Cannot connect to gateway at %s: %s", base_url, exc)
            return False
    if response.status_code != 200:
        logger.error("Gateway at %s answered /health with %s", base_url, response.status_code)
        return False
    return True


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Kraken gateway endpoint self-test")
    parser.add_argument(
        "--base-url",
        default=DEFAULT_BASE_URL,
        help="Gateway base URL (default: %(default)s)",
    )
    parser.add_argument(
        "--format",
        dest="report_format",
        choices=REPORT_FORMATS,
        default="summary",
        help="Report format written to stdout or --output",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help="Per-request timeout in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the rendered report to this file instead of stdout",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level for progress output",
    )
    args = parser.parse_args(argv)
    if not 0 < args.timeout <= MAX_TIMEOUT:
        parser.error(f"--timeout must be greater than 0 and at most {MAX_TIMEOUT:g}")
    return args


async def _run(args: argparse.Namespace) -> int:
    base_url = args.base_url.rstrip("/")
    if not await _gateway_reachable(base_url, args.timeout):
        logger.error("Please make sure the Kraken gateway is running.")
        return 1
    logger.info("Gateway is running at %s", base_url)

    report = await run_self_test(base_url=base_url, timeout=args.timeout)
    rendered = render_report(report, args.report_format)
    if args.output is not None:
        args.output.write_text(rendered, encoding="utf-8")
        logger.info("Wrote %s report to %s", args.report_format, args.output)
    else:
        sys.stdout.write(rendered + "\n")
    return 0 if report.healthy else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    return asyncio.run(_run(args))


__all__ = [
    "CheckResult",
    "GatewaySelfTester",
    "Probe",
    "REPORT_FORMATS",
    "SelfTestReport",
    "default_probes",
    "main",
    "render_html",
    "render_report",
    "render_text",
    "run_self_test",
]


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    raise SystemExit(main())
