"""
Compares the stored document count with the ingestion counters of a running service.

Usage:
    python -m analytics_ingestion_service.tools.verify_counts --url http://localhost:8080
"""
import argparse
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


async def fetch_report(client: httpx.AsyncClient, base_url: str) -> Optional[Dict[str, Any]]:
    try:
        response = await client.get(f"{base_url.rstrip('/')}/api/v1/stats")
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP error calling stats endpoint: {e.response.status_code} - {e.response.text}")
        return None
    except httpx.RequestError as e:
        logger.error(f"Request error calling stats endpoint: {e}. Make sure the service is running at {base_url}.")
        return None


def summarize(report: Dict[str, Any]) -> str:
    stats = report.get("stats", {})
    document_count = report.get("store", {}).get("documentCount")
    lines = [
        f"Stored document count: {document_count}",
        f"Processed: {stats.get('processed', 0)}  Indexed: {stats.get('indexed', 0)}  "
        f"Rejected: {stats.get('rejected', 0)}  Errors: {stats.get('errors', 0)}",
    ]
    if document_count is not None and document_count < stats.get("indexed", 0):
        lines.append("Stored count is below indexed count (retention or replayed duplicates).")
    return "\n".join(lines)


async def run(base_url: str, timeout: float) -> int:
    async with httpx.AsyncClient(timeout=timeout) as client:
        report = await fetch_report(client, base_url)
    if report is None:
        return 1
    print(summarize(report))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Verify stored event counts against ingestion stats.")
    parser.add_argument("--url", default="http://localhost:8080")
    parser.add_argument("--timeout", type=float, default=5.0)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    return asyncio.run(run(args.url, args.timeout))


if __name__ == "__main__":
    raise SystemExit(main())
