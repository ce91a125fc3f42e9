import csv
import io
import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from cost_guard.core.config import settings
from cost_guard.models.schemas import ServiceCost

EXPORT_VERSION = "1.0.0"

SUMMARY_HEADERS = [
    'Service',
    'Display Name',
    'Total Cost',
    'Currency',
    'Budget Utilization (%)',
    'Trend',
    'Top Region',
    'Top Region Cost',
    'Daily Average',
]

DETAILED_HEADERS = [
    'Service',
    'Display Name',
    'Total Cost',
    'Currency',
    'Budget Utilization (%)',
    'Trend',
    'Region',
    'Region Cost',
    'Region Percentage',
    'Tag Key',
    'Tag Value',
    'Tag Cost',
    'Tag Percentage',
    'Date',
    'Daily Cost',
]


def _money(value: float) -> str:
    return f"{value:.2f}"


def _write_rows(rows: Iterable[Sequence[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()


def _base_columns(service: ServiceCost, utilization: Mapping[str, float]) -> List[str]:
    return [
        service.service,
        service.display_name,
        _money(service.total_cost),
        service.currency,
        _money(utilization.get(service.service, 0.0)),
        service.trend.value,
    ]


def generate_csv(services: Sequence[ServiceCost], utilization: Optional[Mapping[str, float]] = None) -> str:
    """One summary row per service.

    ``utilization`` maps service identifiers to utilization percentages.
    """
    utilization = utilization or {}
    rows: List[List[str]] = [SUMMARY_HEADERS]

    for service in services:
        top_region = max(service.regions, key=lambda region: region.cost, default=None)
        daily_average = (
            sum(day.cost for day in service.daily_costs) / len(service.daily_costs)
            if service.daily_costs else 0.0
        )
        rows.append(_base_columns(service, utilization) + [
            top_region.region if top_region else 'N/A',
            _money(top_region.cost if top_region else 0.0),
            _money(daily_average),
        ])

    return _write_rows(rows)


def generate_detailed_csv(services: Sequence[ServiceCost], utilization: Optional[Mapping[str, float]] = None) -> str:
    """Long-format export.

    Each service contributes one row per region, one per tag and one per
    daily cost. Every row repeats the service columns and leaves the
    columns of the other breakdowns blank.
    """
    utilization = utilization or {}
    rows: List[List[str]] = [DETAILED_HEADERS]

    for service in services:
        base = _base_columns(service, utilization)

        for region in service.regions:
            rows.append(base + [
                region.region, _money(region.cost), _money(region.percentage),
                '', '', '', '',
                '', '',
            ])

        for tag in service.tags:
            rows.append(base + [
                '', '', '',
                tag.key, tag.value, _money(tag.cost), _money(tag.percentage),
                '', '',
            ])

        for daily in service.daily_costs:
            rows.append(base + [
                '', '', '',
                '', '', '', '',
                daily.date, _money(daily.cost),
            ])

    return _write_rows(rows)


def generate_json_export(snapshot: Mapping[str, Any], exported_at: Optional[datetime] = None) -> str:
    """Snapshot plus export metadata, pretty-printed"""
    export_data: Dict[str, Any] = dict(snapshot)
    export_data.update({
        "exported_at": (exported_at or datetime.now(timezone.utc)).isoformat(),
        "export_version": EXPORT_VERSION,
        "exported_by": settings.PROJECT_NAME,
    })
    return json.dumps(export_data, indent=2, default=str)
