"""
Curated table definitions.

Each definition is a pure function of the current STAGING content of its
source datasets (newest row per business key) and the curated settings.
Rows come back in a deterministic order so a recompute over unchanged
STAGING produces identical output.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable

from policy_warehouse.config import CuratedSettings
from policy_warehouse.core.models import Location

# source dataset name -> {record_key: staging data}
Sources = dict[str, dict[str, dict[str, Any]]]
ComputeFn = Callable[[Sources, CuratedSettings], list[dict[str, Any]]]

MONTHS_PER_YEAR = Decimal(12)
ZERO = Decimal(0)


@dataclass(frozen=True)
class CuratedDefinition:
    """A named curated table and the staging datasets it reads."""

    name: str
    sources: tuple[str, ...]
    compute: ComputeFn
    description: str = ""


def latest_by_key(staging_rows: Iterable[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """
    Collapse staging rows to the newest version per business key.

    "Newest" is the highest RAW lineage id, so replace and retain supersede
    modes give the same result.
    """
    latest: dict[str, dict[str, Any]] = {}
    for row in sorted(staging_rows, key=lambda r: r["raw_id"]):
        latest[row["record_key"]] = row["data"]
    return latest


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


def _location(value: Any) -> Location | None:
    # Stored as a Location in memory, as a [lon, lat] list once serialized
    if value is None:
        return None
    return Location(float(value[0]), float(value[1]))


def _annual(monthly: Decimal | None) -> Decimal:
    return (monthly or ZERO) * MONTHS_PER_YEAR


def loss_ratio(sources: Sources, settings: CuratedSettings) -> list[dict[str, Any]]:
    """
    Per product_type: sum(claim_amount) / sum(monthly_premium * 12).

    Claims whose policy is not in STAGING are left out. loss_ratio is None
    when the annualized premium is zero.
    """
    policies = sources["policies"]
    claims = sources["claims"]
    quantum = Decimal(1).scaleb(-settings.ratio_scale)

    premiums: dict[str, Decimal] = {}
    for policy in policies.values():
        product = policy["product_type"]
        premiums[product] = premiums.get(product, ZERO) + _annual(_decimal(policy["monthly_premium"]))

    claimed: dict[str, Decimal] = {}
    claim_counts: dict[str, int] = {}
    for claim in claims.values():
        policy = policies.get(claim["policy_id"])
        if policy is None:
            continue
        product = policy["product_type"]
        claimed[product] = claimed.get(product, ZERO) + (_decimal(claim["claim_amount"]) or ZERO)
        claim_counts[product] = claim_counts.get(product, 0) + 1

    rows = []
    for product in sorted(premiums):
        annual_premium = premiums[product]
        total_claims = claimed.get(product, ZERO)
        ratio = None
        if annual_premium != ZERO:
            ratio = (total_claims / annual_premium).quantize(quantum, rounding=ROUND_HALF_UP)
        rows.append(
            {
                "product_type": product,
                "claim_count": claim_counts.get(product, 0),
                "total_claim_amount": total_claims,
                "annualized_premium": annual_premium,
                "loss_ratio": ratio,
            }
        )
    return rows


def geo_fraud_flags(sources: Sources, settings: CuratedSettings) -> list[dict[str, Any]]:
    """
    Claims on fraud-watch products grouped by rounded loss location.

    Only groups with more than fraud_threshold claims are emitted.
    """
    policies = sources["policies"]
    watched = settings.fraud_product_type.upper()

    groups: dict[Location, list[tuple[str, Decimal]]] = {}
    for claim_id, claim in sources["claims"].items():
        policy = policies.get(claim["policy_id"])
        if policy is None or str(policy["product_type"]).upper() != watched:
            continue
        location = _location(claim.get("loss_location"))
        if location is None:
            continue
        cell = location.rounded(settings.geo_round_digits)
        groups.setdefault(cell, []).append((claim_id, _decimal(claim["claim_amount"]) or ZERO))

    rows = []
    for cell, members in groups.items():
        if len(members) <= settings.fraud_threshold:
            continue
        rows.append(
            {
                "product_type": watched,
                "longitude": cell.longitude,
                "latitude": cell.latitude,
                "claim_count": len(members),
                "claim_ids": sorted(claim_id for claim_id, _ in members),
                "total_claim_amount": sum((amount for _, amount in members), ZERO),
            }
        )

    rows.sort(key=lambda r: (-r["claim_count"], r["longitude"], r["latitude"]))
    return rows


def solvency_exposure(sources: Sources, settings: CuratedSettings) -> list[dict[str, Any]]:
    """Per product_type: open-ended policy count, sum assured and annualized premium."""
    totals: dict[str, dict[str, Any]] = {}
    for policy in sources["policies"].values():
        if policy.get("policy_end_date") is not None:
            continue
        product = policy["product_type"]
        entry = totals.setdefault(
            product,
            {"open_policies": 0, "total_sum_assured": ZERO, "annualized_premium": ZERO},
        )
        entry["open_policies"] += 1
        entry["total_sum_assured"] += _decimal(policy["sum_assured"]) or ZERO
        entry["annualized_premium"] += _annual(_decimal(policy["monthly_premium"]))

    return [{"product_type": product, **totals[product]} for product in sorted(totals)]


CURATED_TABLES: dict[str, CuratedDefinition] = {
    definition.name: definition
    for definition in (
        CuratedDefinition(
            name="loss_ratio",
            sources=("policies", "claims"),
            compute=loss_ratio,
            description="Claims paid over annualized premium per product",
        ),
        CuratedDefinition(
            name="geo_fraud_flags",
            sources=("policies", "claims"),
            compute=geo_fraud_flags,
            description="Clustered claims on fraud-watch products",
        ),
        CuratedDefinition(
            name="solvency_exposure",
            sources=("policies",),
            compute=solvency_exposure,
            description="Open-ended policy exposure per product",
        ),
    )
}
