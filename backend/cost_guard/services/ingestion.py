"""
Ingestion normalizer.

Converts Cost Explorer ``GetCostAndUsage`` responses and uploaded CSV exports
into canonical ``ServiceCost`` records. Everything here is a pure transform:
malformed rows are skipped, and only a wholly empty or unrecognized source
raises.
"""
import csv
import io
import math
import re
from collections import OrderedDict
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from cost_guard.core.exceptions import EmptySourceError, UnsupportedFormatError
from cost_guard.models.schemas import ServiceCost
from cost_guard.services.aggregation import ServiceCostBuilder, build_services

logger = structlog.get_logger(__name__)

COST_METRIC = "BlendedCost"
DEFAULT_CURRENCY = "USD"
DEFAULT_DAILY_SERVICE = "Total"

# GovCloud regions carry an extra "gov" segment: us-gov-west-1
REGION_PATTERN = re.compile(r"^(us-gov-[a-z]+-\d+|[a-z]{2,3}-[a-z]+-\d+)$")

INVALID_REGION_TOKENS = frozenset({
    "no region", "global", "noregion", "worldwide", "all regions",
    "multiple regions", "cross-region", "inter-region", "any region",
    "not applicable", "n/a", "none", "unknown", "unspecified",
    "", "null", "undefined",
})

# Billed globally; a per-region split means nothing for these
GLOBAL_SERVICES = frozenset({
    # Networking & content delivery
    "Amazon CloudFront",
    "Amazon Route 53",
    "AWS Global Accelerator",
    "AWS Direct Connect",
    # Security & identity
    "AWS Identity and Access Management",
    "AWS Certificate Manager",
    "AWS WAF",
    "AWS Shield",
    "AWS Single Sign-On",
    "AWS Secrets Manager",
    "AWS Key Management Service",
    # Management & governance
    "AWS Organizations",
    "AWS Control Tower",
    "AWS Config",
    "AWS CloudTrail",
    "AWS Trusted Advisor",
    "AWS Personal Health Dashboard",
    "AWS Systems Manager",
    "AWS CloudFormation",
    # Cost management
    "AWS Billing",
    "AWS Cost and Usage Report",
    "AWS Budgets",
    "AWS Cost Explorer",
    "AWS Cost Anomaly Detection",
    "Tax",
    # Support
    "AWS Support (Business)",
    "AWS Support (Developer)",
    "AWS Support (Enterprise)",
    "AWS Support (Basic)",
    "AWS Premium Support",
    # Other
    "AWS Marketplace",
    "AWS Partner Network",
    "Amazon Chime",
    "Amazon WorkDocs",
    "Amazon WorkMail",
    "AWS Artifact",
    "AWS IQ",
    "AWS re:Post",
    "Amazon DynamoDB Global Tables",
    "Amazon Aurora Global Database",
    "Amazon QuickSight",
    "AWS Data Exchange",
})


class CSVLayout(str, Enum):
    COST_AND_USAGE = "cost-and-usage"
    DAILY_COSTS = "daily-costs"
    SERVICE_COSTS = "service-costs"


# Layout -> marker substrings that must all appear in the header line.
# Checked in order; the first match wins.
LAYOUT_MARKERS: Sequence[Tuple[CSVLayout, Tuple[str, ...]]] = (
    (CSVLayout.COST_AND_USAGE, ("service", "blendedcost")),
    (CSVLayout.DAILY_COSTS, ("date", "cost")),
    (CSVLayout.SERVICE_COSTS, ("service", "amount")),
)

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]")


def normalize_service_name(service_name: str) -> str:
    """Canonical budget-matching key: lowercase alphanumerics only"""
    return _NON_ALPHANUMERIC.sub("", "".join(service_name.lower().split()))


def is_valid_region(region: Optional[str]) -> bool:
    if region is None:
        return False
    candidate = region.strip().lower()
    if candidate in INVALID_REGION_TOKENS or len(candidate) < 2:
        return False
    return bool(REGION_PATTERN.match(candidate))


def is_global_service(service_name: str) -> bool:
    return service_name in GLOBAL_SERVICES


def parse_cost(raw: Any) -> Optional[float]:
    """Parse a monetary amount; None when missing or unparsable"""
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    if not math.isfinite(value):
        return None
    return value


def detect_csv_layout(headers: Sequence[str]) -> CSVLayout:
    header_line = ",".join(h for h in headers if h is not None).lower()
    for layout, markers in LAYOUT_MARKERS:
        if all(marker in header_line for marker in markers):
            return layout
    raise UnsupportedFormatError()


class _ServiceAccumulator:
    """Keeps one builder per source service name, in first-seen order"""

    def __init__(self):
        self._builders: "OrderedDict[str, ServiceCostBuilder]" = OrderedDict()

    def get(self, service_name: str) -> ServiceCostBuilder:
        builder = self._builders.get(service_name)
        if builder is None:
            builder = ServiceCostBuilder(
                display_name=service_name,
                service=normalize_service_name(service_name),
                currency=DEFAULT_CURRENCY,
            )
            self._builders[service_name] = builder
        return builder

    def __contains__(self, service_name: str) -> bool:
        return service_name in self._builders

    def build(self) -> List[ServiceCost]:
        return build_services(self._builders.values())


# CSV ingestion

def _field(row: Mapping[str, Any], *names: str) -> Optional[str]:
    """Look up the first non-empty column among ``names``, ignoring header case"""
    lowered = {str(key).strip().lower(): value for key, value in row.items() if key is not None}
    for name in names:
        value = lowered.get(name.lower())
        if value is not None and str(value).strip() != "":
            return str(value).strip()
    return None


def _ingest_cost_and_usage(rows: Sequence[Mapping[str, Any]]) -> List[ServiceCost]:
    services = _ServiceAccumulator()

    for row in rows:
        service_name = _field(row, "Service")
        cost = parse_cost(_field(row, "BlendedCost", "Cost", "Amount"))
        if not service_name or cost is None:
            continue

        builder = services.get(service_name)
        builder.add_cost(cost)

        region = _field(row, "Region")
        if cost > 0 and is_valid_region(region) and not is_global_service(service_name):
            builder.add_region_cost(region.lower(), cost)

        day = _field(row, "Date")
        if day:
            builder.add_daily_cost(day, cost)

    return services.build()


def _ingest_daily_costs(rows: Sequence[Mapping[str, Any]]) -> List[ServiceCost]:
    services = _ServiceAccumulator()

    for row in rows:
        service_name = _field(row, "Service") or DEFAULT_DAILY_SERVICE
        cost = parse_cost(_field(row, "Cost", "Amount"))
        day = _field(row, "Date")
        if cost is None or not day:
            continue

        builder = services.get(service_name)
        builder.add_cost(cost)
        builder.add_daily_cost(day, cost)

    return services.build()


def _ingest_service_costs(rows: Sequence[Mapping[str, Any]]) -> List[ServiceCost]:
    services = _ServiceAccumulator()

    for row in rows:
        service_name = _field(row, "Service")
        cost = parse_cost(_field(row, "Amount", "Cost"))
        if not service_name or cost is None:
            continue
        services.get(service_name).add_cost(cost)

    return services.build()


_CSV_HANDLERS = {
    CSVLayout.COST_AND_USAGE: _ingest_cost_and_usage,
    CSVLayout.DAILY_COSTS: _ingest_daily_costs,
    CSVLayout.SERVICE_COSTS: _ingest_service_costs,
}


def ingest_csv_rows(rows: Sequence[Mapping[str, Any]]) -> Tuple[CSVLayout, List[ServiceCost]]:
    """Normalize tokenized CSV rows into service costs.

    Raises ``EmptySourceError`` when there are no data rows and
    ``UnsupportedFormatError`` when the header matches no known layout.
    """
    if not rows:
        raise EmptySourceError("CSV file is empty")

    layout = detect_csv_layout(list(rows[0].keys()))
    services = _CSV_HANDLERS[layout](rows)

    logger.info("CSV ingested",
                layout=layout.value,
                rows=len(rows),
                services=len(services))
    return layout, services


def _decode(buffer: bytes) -> str:
    if not buffer:
        return ""
    try:
        return buffer.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise UnsupportedFormatError("CSV file is not UTF-8 encoded text")


def read_csv_rows(buffer: bytes) -> List[Dict[str, str]]:
    """Tokenize an uploaded CSV buffer into header-keyed rows"""
    try:
        return list(csv.DictReader(io.StringIO(_decode(buffer))))
    except csv.Error as e:
        raise UnsupportedFormatError(f"Malformed CSV: {e}")


def ingest_csv_bytes(buffer: bytes) -> Tuple[CSVLayout, List[ServiceCost], int]:
    rows = read_csv_rows(buffer)
    layout, services = ingest_csv_rows(rows)
    return layout, services, len(rows)


def read_csv_headers(buffer: bytes) -> List[str]:
    headers = next(csv.reader(io.StringIO(_decode(buffer))), [])
    if not headers:
        raise EmptySourceError("CSV file is empty")
    return headers


# Cost Explorer ingestion

def _iter_groups(response: Mapping[str, Any]):
    for time_result in response.get("ResultsByTime") or []:
        period_start = (time_result.get("TimePeriod") or {}).get("Start") or ""
        for group in time_result.get("Groups") or []:
            keys = group.get("Keys") or []
            amount = ((group.get("Metrics") or {}).get(COST_METRIC) or {}).get("Amount")
            yield period_start, keys, parse_cost(amount)


def _require_results(response: Optional[Mapping[str, Any]], label: str) -> Mapping[str, Any]:
    if not response or not response.get("ResultsByTime"):
        raise EmptySourceError(f"Cost Explorer returned no {label} results")
    return response


def ingest_cost_explorer(
    service_response: Mapping[str, Any],
    regional_response: Optional[Mapping[str, Any]] = None,
    daily_response: Optional[Mapping[str, Any]] = None,
) -> List[ServiceCost]:
    """Merge the SERVICE, REGION+SERVICE and daily SERVICE groupings.

    ``service_response`` determines which services exist and their totals;
    the other two only enrich services already present.
    """
    _require_results(service_response, "service")
    services = _ServiceAccumulator()

    for _, keys, cost in _iter_groups(service_response):
        if not keys or not keys[0] or cost is None:
            continue
        services.get(keys[0]).add_cost(cost)

    if regional_response:
        for _, keys, cost in _iter_groups(regional_response):
            if len(keys) < 2 or cost is None or cost <= 0:
                continue
            region, service_name = keys[0], keys[1]
            if service_name not in services or is_global_service(service_name):
                continue
            if not is_valid_region(region):
                continue
            services.get(service_name).add_region_cost(region.strip().lower(), cost)

    if daily_response:
        for day, keys, cost in _iter_groups(daily_response):
            if not keys or not keys[0] or cost is None or cost < 0 or not day:
                continue
            if keys[0] not in services:
                continue
            services.get(keys[0]).add_daily_cost(day, cost)

    result = services.build()
    logger.debug("Cost Explorer results normalized", services=len(result))
    return result
