from __future__ import annotations

from dataclasses import dataclass

from nodepool_failover.core.exceptions import ConfigurationError

RANK_LABELS = {1: "primary", 2: "secondary", 3: "tertiary"}


@dataclass(frozen=True)
class Candidate:
    """One VM size to try, with the priority slot it was supplied in."""

    sku: str
    rank: int

    @property
    def label(self) -> str:
        return RANK_LABELS.get(self.rank, f"fallback-{self.rank}")

    def __str__(self) -> str:
        return f"{self.sku}({self.label})"


def _clean(value: str | None) -> str:
    return (value or "").strip()


def build_candidates(
    primary: str | None,
    secondary: str | None = None,
    tertiary: str | None = None,
) -> tuple[Candidate, ...]:
    """Assemble the ordered SKU candidates.

    Unset or empty fallbacks are dropped rather than attempted. A skipped
    secondary does not promote the tertiary: each candidate keeps the rank of
    the slot it came from, so ranks only ever increase.
    """
    sku = _clean(primary)
    if not sku:
        raise ConfigurationError("sku_primary", "primary SKU is required")

    candidates = [Candidate(sku=sku, rank=1)]
    seen = {sku.lower()}
    for rank, raw in ((2, secondary), (3, tertiary)):
        sku = _clean(raw)
        if not sku:
            continue
        if sku.lower() in seen:
            raise ConfigurationError(
                f"sku_{RANK_LABELS[rank]}", f"SKU '{sku}' is already listed at a higher priority"
            )
        seen.add(sku.lower())
        candidates.append(Candidate(sku=sku, rank=rank))
    return tuple(candidates)
