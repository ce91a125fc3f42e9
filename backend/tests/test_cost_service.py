import pytest

from cost_guard.core.exceptions import AWSServiceError, EmptySourceError, NotValidatedError, UnsupportedFormatError
from cost_guard.models.schemas import AWSCredentials
from cost_guard.services.cache_service import CacheService
from cost_guard.services.cost_service import CostService
from cost_guard.services.ingestion import CSVLayout

from conftest import make_ce_response, make_client_error, make_daily_ce_response

EC2 = "Amazon Elastic Compute Cloud - Compute"
CDN = "Amazon CloudFront"
CREDENTIALS = AWSCredentials(access_key_id="AKIAEXAMPLE", secret_access_key="secret")


def _fetch_outcomes():
    return [
        make_ce_response([([EC2], "100.0"), ([CDN], "20.0")]),
        make_ce_response([
            (["us-east-1", EC2], "70.0"),
            (["eu-west-1", EC2], "30.0"),
            (["us-east-1", CDN], "20.0"),
        ]),
        make_daily_ce_response({
            "2024-11-01": [(EC2, "40.0"), (CDN, "10.0")],
            "2024-11-02": [(EC2, "60.0"), (CDN, "10.0")],
        }),
    ]


@pytest.fixture
def build_cost_service(make_explorer, clock):
    async def _build(outcomes):
        explorer, ce, _ = make_explorer([{"ResultsByTime": []}] + list(outcomes))
        service = CostService(explorer, cache=CacheService(name="cost_data", clock=clock.monotonic), clock=clock)
        await service.validate_credentials(CREDENTIALS)
        ce.calls.clear()
        return service, ce

    return _build


class TestCostExplorerData:
    @pytest.mark.asyncio
    async def test_requires_validation(self, cost_service):
        with pytest.raises(NotValidatedError):
            await cost_service.get_cost_data()

    @pytest.mark.asyncio
    async def test_fetch_normalizes_three_groupings(self, build_cost_service, clock):
        service, ce = await build_cost_service(_fetch_outcomes())

        data = await service.get_cost_data()

        assert [call[1]["Granularity"] for call in ce.calls] == ["MONTHLY", "MONTHLY", "DAILY"]
        assert ce.calls[0][1]["TimePeriod"] == {"Start": "2024-10-20", "End": "2024-11-19"}
        assert data.total_cost == pytest.approx(120.0)
        assert data.last_updated == clock.now

        services = {item.service: item for item in data.services}
        ec2 = services["amazonelasticcomputecloudcompute"]
        assert [region.region for region in ec2.regions] == ["us-east-1", "eu-west-1"]
        assert [day.cost for day in ec2.daily_costs] == [40.0, 60.0]
        # Global services carry no regional split
        assert services["amazoncloudfront"].regions == []

    @pytest.mark.asyncio
    async def test_second_read_is_served_from_cache(self, build_cost_service):
        service, ce = await build_cost_service(_fetch_outcomes())

        first = await service.get_cost_data()
        second = await service.get_cost_data()

        assert second == first
        assert len(ce.calls) == 3
        assert service.get_cache_stats().hits == 1

    @pytest.mark.asyncio
    async def test_refresh_forces_a_new_fetch(self, build_cost_service):
        service, ce = await build_cost_service(_fetch_outcomes() + _fetch_outcomes())

        await service.get_cost_data()
        assert service.refresh_cost_data() == 1
        await service.get_cost_data()

        assert len(ce.calls) == 6

    @pytest.mark.asyncio
    async def test_explicit_window(self, build_cost_service):
        service, ce = await build_cost_service(_fetch_outcomes())

        await service.get_cost_data("2024-11-01", "2024-11-15")

        assert ce.calls[0][1]["TimePeriod"] == {"Start": "2024-11-01", "End": "2024-11-15"}

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, build_cost_service):
        service, ce = await build_cost_service([make_client_error("ValidationException", "bad")] + _fetch_outcomes())

        with pytest.raises(AWSServiceError):
            await service.get_cost_data()
        data = await service.get_cost_data()

        assert data.total_cost == pytest.approx(120.0)

    @pytest.mark.asyncio
    async def test_available_services(self, build_cost_service):
        service, _ = await build_cost_service([
            {"DimensionValues": [{"Value": "AWS Lambda"}, {"Value": "Amazon S3"}, {"Value": ""}]},
        ])

        assert await service.get_available_services() == ["AWS Lambda", "Amazon S3"]

    @pytest.mark.asyncio
    async def test_available_services_swallow_aws_failures(self, build_cost_service, cost_service):
        assert await cost_service.get_available_services() == []

        service, _ = await build_cost_service([make_client_error("AccessDeniedException", "denied")])
        assert await service.get_available_services() == []


class TestCSVUploads:
    def test_process_upload(self, cost_service, clock):
        result = cost_service.process_csv_upload(
            b"Date,Service,Cost\n2024-11-01,AWS Lambda,1.50\n2024-11-02,AWS Lambda,2.50\n"
        )

        assert result.layout == CSVLayout.DAILY_COSTS.value
        assert result.rows_processed == 2
        assert result.cost_data.total_cost == pytest.approx(4.0)
        assert result.cost_data.last_updated == clock.now

    def test_process_upload_rejects_unknown_layout(self, cost_service):
        with pytest.raises(UnsupportedFormatError):
            cost_service.process_csv_upload(b"foo,bar\n1,2\n")

    def test_validate_csv(self, cost_service):
        assert cost_service.validate_csv(b"Service,Amount\nAmazon S3,1\n") == CSVLayout.SERVICE_COSTS
        with pytest.raises(EmptySourceError):
            cost_service.validate_csv(b"")
