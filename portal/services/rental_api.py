"""Rental inventory API client — read-only customers, machines and rentals."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import BaseModel

from portal.core.config import Settings, get_settings
from portal.core.errors import ConfigurationError, NotFound, PortalError, UpstreamUnavailable

logger = logging.getLogger(__name__)


# ── Schemas ──────────────────────────────────────────────────

class AgreementMachine(BaseModel):
    id: str | None = None
    name: str


class Agreement(BaseModel):
    id: str
    customer_id: int | None = None
    customer_name: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    machines: list[AgreementMachine] = []


class CompanyCard(BaseModel):
    """One entry of a fan-out lookup; ``status`` is ``ready`` or ``error``."""
    customer_id: int
    status: str
    company: dict[str, Any] | None = None
    error: str | None = None


def machine_label(machine: dict[str, Any]) -> str:
    parts = [str(machine[k]) for k in ("make", "model", "number") if machine.get(k)]
    label = " ".join(parts).strip()
    if label:
        return label
    machine_id = machine.get("machineId")
    return f"Maskin {machine_id}" if machine_id is not None else "Maskin"


def to_agreement(rental: dict[str, Any], customer_id: int, index: int = 0) -> Agreement:
    rental_id = rental.get("rentalId")
    return Agreement(
        id=str(rental_id) if rental_id is not None else f"{customer_id}-{index}",
        customer_id=rental.get("customerId") or customer_id,
        customer_name=rental.get("customerName"),
        start_date=rental.get("startDate"),
        end_date=rental.get("endDate"),
        machines=[
            AgreementMachine(
                id=str(m["machineId"]) if m.get("machineId") is not None else None,
                name=machine_label(m),
            )
            for m in rental.get("machines") or []
        ],
    )


def is_historical(agreement: Agreement, now: datetime | None = None) -> bool:
    """True when the agreement has a parseable end date in the past."""
    if not agreement.end_date:
        return False
    try:
        end = datetime.fromisoformat(agreement.end_date.replace("Z", "+00:00"))
    except ValueError:
        return False
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return end < (now or datetime.now(timezone.utc))


def split_agreements(
    agreements: list[Agreement], now: datetime | None = None
) -> tuple[list[Agreement], list[Agreement]]:
    active: list[Agreement] = []
    historical: list[Agreement] = []
    for agreement in agreements:
        (historical if is_historical(agreement, now) else active).append(agreement)
    return active, historical


# ── Client ───────────────────────────────────────────────────

class RentalApiClient:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def _config(self) -> tuple[str, str]:
        api_key = (
            self.settings.rental_api_key_primary.strip()
            or self.settings.rental_api_key_secondary.strip()
        )
        base_url = self.settings.rental_api_base_url.strip()
        if not api_key or not base_url:
            logger.error("Missing rental API configuration")
            raise ConfigurationError(
                "Mangler konfigurasjon for utleie-API",
                details={"base_url": bool(base_url), "api_key": bool(api_key)},
            )
        return base_url.rstrip("/"), api_key

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        base_url, api_key = self._config()
        url = f"{base_url}/{path}"
        try:
            async with httpx.AsyncClient(timeout=self.settings.rental_api_timeout_seconds) as client:
                resp = await client.get(
                    url,
                    params=params,
                    headers={
                        "Accept": "application/json",
                        "Ocp-Apim-Subscription-Key": api_key,
                    },
                )
        except httpx.HTTPError as exc:
            logger.warning("Rental API request to %s failed: %s", path, exc)
            raise UpstreamUnavailable(details={"path": path, "error": str(exc)}) from exc

        if resp.status_code == 404:
            raise NotFound(details={"path": path})
        if resp.status_code >= 400:
            logger.error("Rental API returned %s for %s: %s", resp.status_code, path, resp.text[:500])
            raise UpstreamUnavailable(
                details={"path": path, "status": resp.status_code, "body": resp.text[:500]}
            )
        try:
            return resp.json()
        except ValueError as exc:
            logger.error("Rental API returned non-JSON for %s", path)
            raise UpstreamUnavailable(details={"path": path, "body": resp.text[:500]}) from exc

    async def get_customer(self, customer_id: int) -> dict[str, Any]:
        return await self._get("GetCustomerById", {"customerId": customer_id})

    async def get_machine(self, machine_id: int) -> dict[str, Any]:
        return await self._get(f"GetMachine/{machine_id}")

    async def get_rentals(self, customer_id: int) -> list[Agreement]:
        data = await self._get("GetRentalsByCustomerId", {"customerId": customer_id})
        if not isinstance(data, list):
            return []
        return [to_agreement(rental, customer_id, i) for i, rental in enumerate(data)]

    async def agreements_for_customers(self, customer_ids: list[int]) -> list[Agreement]:
        """Fetch rentals for several customers concurrently; any failure fails all."""
        results = await asyncio.gather(*(self.get_rentals(cid) for cid in customer_ids))
        return [agreement for batch in results for agreement in batch]

    async def company_cards(self, customer_ids: list[int]) -> list[CompanyCard]:
        """Fetch customer details concurrently, reporting failures per company."""

        async def _card(customer_id: int) -> CompanyCard:
            try:
                company = await self.get_customer(customer_id)
            except PortalError as exc:
                return CompanyCard(customer_id=customer_id, status="error", error=exc.message)
            return CompanyCard(customer_id=customer_id, status="ready", company=company)

        return list(await asyncio.gather(*(_card(cid) for cid in customer_ids)))


def get_rental_api() -> RentalApiClient:
    """FastAPI dependency; overridden in tests."""
    return RentalApiClient()
