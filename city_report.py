#!/usr/bin/env python3
"""
City Active Users Report for GA4

Authenticates with a service account key (signed JWT -> OAuth access token)
and calls the GA4 Data API runReport REST endpoint for active users by city.

Usage:
  python city_report.py --property-id 427048881 \
      --service-account-key credentials.json \
      --start-date 2023-09-01 --end-date 2023-09-30

  # Also save the rows as a tab-separated file
  python city_report.py --property-id 427048881 --output-file city_users.txt

Env vars:
  GA_PROPERTY_ID, GOOGLE_APPLICATION_CREDENTIALS, GA_START_DATE, GA_END_DATE, GA_TIMEOUT
"""

from __future__ import annotations

import argparse
import logging
import os
import re
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pandas as pd
import requests

from ga4_errors import ApiError, NetworkError, ReportError
from service_account_token import (
    DEFAULT_TIMEOUT,
    get_access_token,
    load_service_account_key,
)

RUN_REPORT_URL = "https://analyticsdata.googleapis.com/v1beta/properties/{property_id}:runReport"
PLACEHOLDER_PROPERTY_ID = "YOUR_GA4_PROPERTY_ID"

DEFAULT_DIMENSION = "city"
DEFAULT_METRIC = "activeUsers"
DEFAULT_PROPERTY_ID = os.getenv("GA_PROPERTY_ID", "")
DEFAULT_KEY_FILE = os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "credentials.json")
DEFAULT_START_DATE = os.getenv("GA_START_DATE", "30daysAgo")
DEFAULT_END_DATE = os.getenv("GA_END_DATE", "yesterday")
DEFAULT_TIMEOUT_SECONDS = os.getenv("GA_TIMEOUT", str(DEFAULT_TIMEOUT))

# Date forms runReport accepts: YYYY-MM-DD, today, yesterday, NdaysAgo
DATE_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2}|today|yesterday|\d+daysAgo)$")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DateRange:
    start_date: str
    end_date: str


@dataclass(frozen=True)
class ReportRow:
    city: str
    active_users: str


@dataclass(frozen=True)
class ReportConfig:
    property_id: str
    date_range: DateRange
    dimension: str = DEFAULT_DIMENSION
    metric: str = DEFAULT_METRIC


def validate_date(value: str) -> str:
    text = value.strip()
    if not DATE_PATTERN.match(text):
        raise argparse.ArgumentTypeError(
            f"invalid date {value!r} (use YYYY-MM-DD, today, yesterday or NdaysAgo)"
        )
    return text


def positive_float(value: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise argparse.ArgumentTypeError(f"invalid timeout {value!r} (expected seconds, e.g. 30)")
    if not number > 0:
        raise argparse.ArgumentTypeError(f"timeout must be greater than 0, got {value!r}")
    return number


def report_url(property_id: str) -> str:
    return RUN_REPORT_URL.format(property_id=property_id)


def build_report_request(
    date_range: DateRange,
    dimension: str = DEFAULT_DIMENSION,
    metric: str = DEFAULT_METRIC,
) -> Dict[str, Any]:
    return {
        "dimensions": [{"name": dimension}],
        "metrics": [{"name": metric}],
        "dateRanges": [
            {"startDate": date_range.start_date, "endDate": date_range.end_date}
        ],
    }


def _parse_rows(data: Dict[str, Any], url: str, status_code: int) -> List[ReportRow]:
    rows = []
    for index, row in enumerate(data.get("rows") or []):
        try:
            city = row["dimensionValues"][0]["value"]
            active_users = row["metricValues"][0]["value"]
        except (KeyError, IndexError, TypeError) as e:
            raise ApiError(
                f"Malformed report row {index}: {e!r}",
                endpoint=url,
                status_code=status_code,
                payload=row,
            ) from e
        rows.append(ReportRow(city=city, active_users=active_users))
    return rows


def fetch_report(
    access_token: str,
    property_id: str,
    date_range: DateRange,
    timeout: float = DEFAULT_TIMEOUT,
    dimension: str = DEFAULT_DIMENSION,
    metric: str = DEFAULT_METRIC,
) -> List[ReportRow]:
    """Call runReport and return the rows in the order the API sent them.

    A response without ``rows`` is an empty report unless it carries an
    ``error`` object, which raises ApiError with the upstream message.
    """
    url = report_url(property_id)
    headers = {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
    }
    payload = build_report_request(date_range, dimension, metric)

    logger.info(
        "Querying property %s from %s to %s", property_id, date_range.start_date, date_range.end_date
    )
    try:
        response = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        raise NetworkError(f"Report request failed: {e}", endpoint=url) from e

    try:
        data = response.json()
    except ValueError:
        raise ApiError(
            f"Report endpoint returned a non-JSON body: {response.text[:200]}",
            endpoint=url,
            status_code=response.status_code,
            payload=response.text,
        )

    if not isinstance(data, dict):
        raise ApiError(
            "Report response is not a JSON object",
            endpoint=url,
            status_code=response.status_code,
            payload=data,
        )

    if "error" in data:
        error = data["error"]
        if isinstance(error, dict):
            message = error.get("message") or "unknown error"
            status = error.get("status")
        else:
            message, status = str(error), None
        raise ApiError(
            f"runReport failed: {message}",
            endpoint=url,
            status_code=response.status_code,
            payload=data,
            status=status,
        )

    if not response.ok:
        raise ApiError(
            f"runReport failed with HTTP {response.status_code}",
            endpoint=url,
            status_code=response.status_code,
            payload=data,
        )

    rows = _parse_rows(data, url, response.status_code)
    logger.info("Received %d rows", len(rows))
    return rows


def format_rows(rows: List[ReportRow]) -> str:
    return "".join(f"City: {row.city}\nActive Users: {row.active_users}\n" for row in rows)


def print_report(rows: List[ReportRow]) -> None:
    sys.stdout.write(format_rows(rows))


def save_rows(rows: List[ReportRow], path: str) -> str:
    df = pd.DataFrame(
        [{"city": row.city, "active_users": row.active_users} for row in rows],
        columns=["city", "active_users"],
    )
    df.to_csv(path, sep="\t", index=False)
    return path


def run(
    config: ReportConfig,
    credentials_path: str,
    timeout: float = DEFAULT_TIMEOUT,
    show_claims: bool = False,
) -> List[ReportRow]:
    """Load the key, mint a token and fetch the report. No output is printed."""
    credentials = load_service_account_key(credentials_path)

    access_token = get_access_token(credentials, timeout=timeout, log_claims=show_claims)

    return fetch_report(
        access_token,
        config.property_id,
        config.date_range,
        timeout=timeout,
        dimension=config.dimension,
        metric=config.metric,
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="GA4 active users by city (service account, REST)")
    p.add_argument("--property-id", default=DEFAULT_PROPERTY_ID, help="GA4 property ID")
    p.add_argument("--service-account-key", default=DEFAULT_KEY_FILE,
                   help="Path to service account JSON key file")
    p.add_argument("--start-date", type=validate_date, default=DEFAULT_START_DATE,
                   help="Start date (YYYY-MM-DD or relative, e.g. 30daysAgo)")
    p.add_argument("--end-date", type=validate_date, default=DEFAULT_END_DATE,
                   help="End date (YYYY-MM-DD or relative, e.g. yesterday)")
    p.add_argument("--timeout", type=positive_float, default=DEFAULT_TIMEOUT_SECONDS,
                   help="HTTP timeout in seconds for each request")
    p.add_argument("--output-file", help="Also save rows to this tab-separated file")
    p.add_argument("--show-claims", action="store_true",
                   help="Log the decoded JWT claims before the token exchange")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    property_id = (args.property_id or "").strip()
    if not property_id or property_id == PLACEHOLDER_PROPERTY_ID:
        parser.error("--property-id is required (or set GA_PROPERTY_ID)")

    config = ReportConfig(
        property_id=property_id,
        date_range=DateRange(start_date=args.start_date, end_date=args.end_date),
    )

    try:
        rows = run(config, args.service_account_key, timeout=args.timeout, show_claims=args.show_claims)
    except ReportError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print_report(rows)

    if args.output_file:
        path = save_rows(rows, args.output_file)
        logger.info("Saved %d rows to %s", len(rows), path)

    return 0


if __name__ == "__main__":
    sys.exit(main())
