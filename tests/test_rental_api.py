"""Rental API client against a mocked HTTP transport."""

from unittest.mock import patch

import httpx
import pytest

from portal.core.config import Settings
from portal.core.errors import ConfigurationError, NotFound, UpstreamUnavailable
from portal.services.rental_api import RentalApiClient

_RealAsyncClient = httpx.AsyncClient


def _settings(**overrides) -> Settings:
    values = {
        "rental_api_base_url": "https://rental.example/api/",
        "rental_api_key_primary": "",
        "rental_api_key_secondary": "secondary-key",
    }
    values.update(overrides)
    return Settings(**values)


def _patched(handler):
    """Route every AsyncClient the module builds through ``handler``."""
    transport = httpx.MockTransport(handler)
    return patch(
        "portal.services.rental_api.httpx.AsyncClient",
        side_effect=lambda **kwargs: _RealAsyncClient(transport=transport, **kwargs),
    )


@pytest.mark.asyncio
async def test_rentals_are_mapped_to_agreements():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{
            "rentalId": 501,
            "customerName": "Bygg AS",
            "startDate": "2026-01-01",
            "machines": [{"machineId": 7, "make": "Volvo", "model": "EC220"}, {"machineId": 8}],
        }])

    with _patched(handler):
        agreements = await RentalApiClient(_settings()).get_rentals(2228)

    assert len(agreements) == 1
    assert agreements[0].id == "501"
    assert agreements[0].customer_id == 2228
    assert [m.name for m in agreements[0].machines] == ["Volvo EC220", "Maskin 8"]

    request = seen[0]
    assert request.url.path == "/api/GetRentalsByCustomerId"
    assert request.url.params["customerId"] == "2228"
    # Falls back to the secondary key when the primary is blank
    assert request.headers["Ocp-Apim-Subscription-Key"] == "secondary-key"


@pytest.mark.asyncio
async def test_machine_lookup_path():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/GetMachine/77"
        return httpx.Response(200, json={"machineId": 77})

    with _patched(handler):
        machine = await RentalApiClient(_settings(rental_api_key_primary="primary")).get_machine(77)

    assert machine == {"machineId": 77}


@pytest.mark.asyncio
async def test_upstream_404_maps_to_not_found():
    with _patched(lambda request: httpx.Response(404)):
        with pytest.raises(NotFound):
            await RentalApiClient(_settings()).get_customer(31337)


@pytest.mark.asyncio
async def test_upstream_error_maps_to_unavailable():
    with _patched(lambda request: httpx.Response(500, text="boom")):
        with pytest.raises(UpstreamUnavailable) as exc_info:
            await RentalApiClient(_settings()).get_customer(2228)

    assert exc_info.value.details["status"] == 500


@pytest.mark.asyncio
async def test_transport_error_maps_to_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with _patched(handler):
        with pytest.raises(UpstreamUnavailable):
            await RentalApiClient(_settings()).get_customer(2228)


@pytest.mark.asyncio
async def test_one_failing_customer_fails_the_fan_out():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["customerId"] == "1075":
            return httpx.Response(503)
        return httpx.Response(200, json=[{"rentalId": 1}])

    with _patched(handler):
        with pytest.raises(UpstreamUnavailable):
            await RentalApiClient(_settings()).agreements_for_customers([2228, 1075])


@pytest.mark.asyncio
async def test_missing_configuration():
    client = RentalApiClient(_settings(rental_api_key_secondary=""))

    with pytest.raises(ConfigurationError):
        await client.get_customer(2228)


@pytest.mark.asyncio
async def test_non_json_body_maps_to_unavailable():
    with _patched(lambda request: httpx.Response(200, text="<html>maintenance</html>")):
        with pytest.raises(UpstreamUnavailable) as exc_info:
            await RentalApiClient(_settings()).get_customer(2228)

    assert exc_info.value.details == {
        "path": "GetCustomerById",
        "body": "<html>maintenance</html>",
    }
