"""Two-part (base + hardener) formulation engine.

The base drives the hardener, never the reverse: the hardener's gross share
of the batch is whatever the base leaves over (``100 - base total %``), and
every mutation finishes by re-deriving the hardener through
:meth:`TwoPartSystem.recompute`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, List, Mapping, Optional, Sequence

from .exceptions import SaveValidationError, ValidationFailure
from .formulation import (
    Formulation,
    FormulationMetrics,
    LineItem,
    RawMaterial,
    clean_count,
    clean_percentage,
    compute_metrics,
    effective_density,
    lookup,
    resolve_field,
)
from .utils import safe_ratio, to_number

GROSS_TOTAL = 100.0


@dataclass(frozen=True)
class MixtureMetrics:
    base: FormulationMetrics
    hardener: FormulationMetrics
    svr: float = 0.0
    pvc: float = 0.0
    cpvc: float = 0.0
    density: float = 0.0
    production_cost_per_liter: float = 0.0


def _column_sum(items: Sequence[LineItem], attr: str) -> float:
    return sum(to_number(getattr(item, attr)) for item in items)


class TwoPartSystem:
    """A base formulation, an optional linked hardener and their mixing ratio."""

    def __init__(
        self,
        catalog: Mapping[int, RawMaterial],
        base: Optional[Formulation] = None,
        hardener: Optional[Formulation] = None,
        base_ratio: float = 0.0,
        hardener_ratio: float = 0.0,
    ):
        self.catalog = catalog
        self.base = base if base is not None else Formulation()
        self.hardener = hardener
        self.base_ratio = 0.0
        self.hardener_ratio = 0.0
        self.set_ratios(base_ratio, hardener_ratio)
        self.recompute()

    # ── derived totals ───────────────────────────────────

    def base_total(self) -> float:
        return _column_sum(self.base.items, "total_percentage")

    def expected_hardener_total(self) -> float:
        """Gross share left for the hardener; may be negative if the base overshoots."""
        return GROSS_TOTAL - self.base_total()

    def target_base_total(self) -> float:
        """Gross total the base column should keep when a percentage is edited."""
        current = self.base_total()
        if current:
            return current
        total_ratio = self.base_ratio + self.hardener_ratio
        if total_ratio > 0:
            return self.base_ratio / total_ratio * GROSS_TOTAL
        return GROSS_TOTAL

    def _wt_per_liter(self, item: LineItem, total: float) -> float:
        return total / effective_density(lookup(self.catalog, item.material_id))

    def _with_total(self, item: LineItem, total: float) -> LineItem:
        return replace(item, total_percentage=total, wt_per_liter=self._wt_per_liter(item, total))

    # ── propagation rules ────────────────────────────────

    @staticmethod
    def _percentages_from_totals(items: Sequence[LineItem]) -> List[LineItem]:
        total_sum = _column_sum(items, "total_percentage")
        return [
            replace(item, percentage=safe_ratio(to_number(item.total_percentage), total_sum) * 100)
            for item in items
        ]

    def _totals_from_percentages(self, items: Sequence[LineItem], target: float) -> List[LineItem]:
        percent_sum = sum(max(0.0, to_number(item.percentage)) for item in items)
        return [
            self._with_total(
                item, safe_ratio(max(0.0, to_number(item.percentage)), percent_sum) * target
            )
            for item in items
        ]

    def _derive_hardener(self, items: Sequence[LineItem], base_total: float) -> List[LineItem]:
        """Re-derive totals and weights; the typed percentages are kept as entered."""
        share = max(0.0, GROSS_TOTAL - base_total)
        return [
            self._with_total(item, max(0.0, to_number(item.percentage)) * share / 100)
            for item in items
        ]

    def hardener_display_percentages(self) -> List[float]:
        """Hardener percentages as shown beside the totals: 0 while the base leaves no share."""
        if self.hardener is None:
            return []
        share = self.expected_hardener_total()
        return [
            safe_ratio(to_number(item.total_percentage), share) * 100 if share > 0 else 0.0
            for item in self.hardener.items
        ]

    def recompute(self) -> None:
        """Re-derive every hardener figure from the base's current total."""
        if self.hardener is None:
            return
        self.hardener.items = self._derive_hardener(self.hardener.items, self.base_total())

    # ── edits ────────────────────────────────────────────

    def _require_hardener(self) -> Formulation:
        if self.hardener is None:
            raise ValidationFailure("No hardener is linked to this base")
        return self.hardener

    def _section(self, is_hardener: bool) -> Formulation:
        return self._require_hardener() if is_hardener else self.base

    def update_item(self, item_id: str, field_name: str, value: Any, is_hardener: bool = False) -> None:
        attr = resolve_field(field_name)
        section = self._section(is_hardener)
        index = section.index_of(item_id)
        items = list(section.items)

        if attr in ("sequence", "waiting_time"):
            label = "Waiting time" if attr == "waiting_time" else "Sequence"
            items[index] = replace(items[index], **{attr: clean_count(value, label=label)})
            section.items = items
            return

        if attr == "wt_per_liter":
            raise ValidationFailure("Wt/Ltr is calculated and cannot be edited")

        if is_hardener:
            if attr == "total_percentage":
                raise ValidationFailure("Hardener Total % is derived from the base and cannot be edited")
            items[index] = replace(items[index], percentage=clean_percentage(value, clamp_negative=True))
            section.items = self._derive_hardener(items, self.base_total())
            return

        if attr == "total_percentage":
            total = to_number(clean_percentage(value, label="Total %", clamp_negative=True))
            items[index] = self._with_total(items[index], total)
            new_items = self._percentages_from_totals(items)
        else:
            target = self.target_base_total()
            items[index] = replace(items[index], percentage=clean_percentage(value, clamp_negative=True))
            new_items = self._totals_from_percentages(items, target)

        self.base.items = new_items
        self.recompute()

    def set_column_total(self, new_total: Any, is_hardener: bool = False) -> None:
        """Rescale the base's total % column so it sums to *new_total*."""
        if is_hardener:
            raise ValidationFailure("Hardener Total % is derived from the base and cannot be set")
        total = to_number(clean_percentage(new_total, label="Total %", clamp_negative=True))
        rescaled = [
            self._with_total(item, to_number(item.percentage) / 100 * total)
            for item in self.base.items
        ]
        self.base.items = self._percentages_from_totals(rescaled)
        self.recompute()

    def add_item(self, material_id: int, is_hardener: bool = False) -> LineItem:
        item = self._section(is_hardener).add_item(material_id, self.catalog)
        self.recompute()
        return item

    def remove_item(self, item_id: str, is_hardener: bool = False) -> None:
        self._section(is_hardener).remove_item(item_id)
        self.recompute()

    def reorder(self, item_id: str, new_index: int, is_hardener: bool = False) -> None:
        self._section(is_hardener).reorder(item_id, new_index)

    def set_ratios(self, base_ratio: Any, hardener_ratio: Any) -> None:
        base = to_number(base_ratio)
        hardener = to_number(hardener_ratio)
        if base < 0 or hardener < 0:
            raise ValidationFailure("Mixing ratio cannot be negative")
        self.base_ratio = base
        self.hardener_ratio = hardener
        self.base.mixing_ratio_part = base
        if self.hardener is not None:
            self.hardener.mixing_ratio_part = hardener

    def link_hardener(self, hardener: Formulation) -> None:
        hardener.mixing_ratio_part = self.hardener_ratio
        self.hardener = hardener
        self.recompute()

    def unlink_hardener(self) -> None:
        self.hardener = None

    # ── metrics & save gate ──────────────────────────────

    def mixture_metrics(self) -> MixtureMetrics:
        base = compute_metrics(self.base.items, self.catalog)
        hardener_items = self.hardener.items if self.hardener is not None else []
        hardener = compute_metrics(hardener_items, self.catalog)

        total_ratio = self.base_ratio + self.hardener_ratio
        if total_ratio <= 0:
            return MixtureMetrics(base=base, hardener=hardener)

        base_weight = self.base_ratio / total_ratio
        hardener_weight = self.hardener_ratio / total_ratio

        def blend(attr: str) -> float:
            return getattr(base, attr) * base_weight + getattr(hardener, attr) * hardener_weight

        return MixtureMetrics(
            base=base,
            hardener=hardener,
            svr=blend("svr"),
            pvc=blend("pvc"),
            cpvc=blend("cpvc"),
            density=blend("density"),
            production_cost_per_liter=blend("production_cost_per_liter"),
        )

    def validate_for_save(self) -> None:
        if not self.base.master_product_id:
            raise SaveValidationError("Please select a Master Product")
        if any(to_number(item.total_percentage) == 0 for item in self.base.items):
            raise SaveValidationError("Some base items have Total % as 0. Please configure properly.")
        if self.hardener is None:
            return
        if max(0.0, self.expected_hardener_total()) > 0:
            hardener_items = self.hardener.items
            if not hardener_items or any(
                to_number(item.total_percentage) == 0 for item in hardener_items
            ):
                raise SaveValidationError("Set the hardener first")


__all__ = ["MixtureMetrics", "TwoPartSystem"]
