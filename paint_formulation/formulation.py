"""Single-formulation engine: default policy, recipe metrics and line-item edits.

Everything in here is pure: no database, no HTTP.  Callers hand in a catalog
(``Mapping[material_id, RawMaterial]``) and a list of :class:`LineItem`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from .exceptions import ValidationFailure
from .utils import is_numeric, safe_ratio, strip_leading_zero, to_number

GENERAL = "General"
RESIN = "Resin"
EXTENDER = "Extender"
HARDENER = "Hardener"
BASE = "Base"

SUBCATEGORIES: Tuple[str, ...] = (GENERAL, RESIN, EXTENDER, HARDENER, BASE)

DEFAULT_DENSITY = 1.0
DEFAULT_SOLIDS_PERCENT = 0.0
DEFAULT_RESIN_SOLIDS_PERCENT = 100.0
# Typical CPVC for alkyd/QD systems with calcite, talc and rutile TiO2 (50-55%).
CPVC_EXTENDER_DEFAULT = 52.0

# camelCase names used on the wire -> attribute names on LineItem.
FIELD_ALIASES: Dict[str, str] = {
    "percentage": "percentage",
    "totalPercentage": "total_percentage",
    "total_percentage": "total_percentage",
    "wtInLtr": "wt_per_liter",
    "wtPerLtr": "wt_per_liter",
    "wt_per_liter": "wt_per_liter",
    "sequence": "sequence",
    "waitingTime": "waiting_time",
    "waiting_time": "waiting_time",
}

EDITABLE_FIELDS = frozenset({"percentage", "sequence", "waiting_time"})


@dataclass(frozen=True)
class RawMaterial:
    id: int
    name: str = ""
    density: Optional[float] = None
    solids_percent: Optional[float] = None
    solid_density: Optional[float] = None
    oil_absorption: Optional[float] = None
    subcategory: str = GENERAL
    can_repeat: bool = False
    purchase_cost: float = 0.0


# Stand-in for ids the catalog does not know: density 1, solvent, free.
UNKNOWN_MATERIAL = RawMaterial(id=0, name="Unknown Material")


@dataclass
class LineItem:
    material_id: int
    percentage: Any = ""
    total_percentage: Any = ""
    wt_per_liter: Any = ""
    sequence: int = 1
    waiting_time: int = 0
    item_id: str = field(default_factory=lambda: uuid4().hex)


@dataclass(frozen=True)
class FormulationMetrics:
    total_percentage: float = 0.0
    total_volume: float = 0.0
    total_solid: float = 0.0
    solid_volume: float = 0.0
    pigment_volume: float = 0.0
    binder_volume: float = 0.0
    svr: float = 0.0
    pvc: float = 0.0
    cpvc: float = 0.0
    density: float = 0.0
    production_cost_per_liter: float = 0.0


def resolve_field(name: str) -> str:
    try:
        return FIELD_ALIASES[name]
    except KeyError:
        raise ValidationFailure(f"Unknown field '{name}'") from None


# ─────────────────────────────────────────────────────────
# Default policy
# ─────────────────────────────────────────────────────────


def lookup(catalog: Mapping[int, RawMaterial], material_id: int) -> RawMaterial:
    return catalog.get(material_id) or UNKNOWN_MATERIAL


def effective_density(material: RawMaterial) -> float:
    """Liquid density, or 1 when unset or non-positive."""
    density = to_number(material.density)
    return density if density > 0 else DEFAULT_DENSITY


def solid_phase_density(material: RawMaterial) -> float:
    """Density used for the solid volume: a resin's solid density when known."""
    if material.subcategory == RESIN and to_number(material.solid_density) > 0:
        return to_number(material.solid_density)
    return effective_density(material)


def effective_solids(material: RawMaterial) -> float:
    """Solids percent clamped to [0, 100]; unknown means solvent (0)."""
    if material.solids_percent is None:
        return DEFAULT_SOLIDS_PERCENT
    return max(0.0, min(100.0, to_number(material.solids_percent)))


def binder_solids(material: RawMaterial) -> float:
    """Solids percent of a resin for PVC; resins are assumed 100% solids if unset."""
    solids = to_number(material.solids_percent)
    return solids if solids else DEFAULT_RESIN_SOLIDS_PERCENT


def binder_solid_density(material: RawMaterial) -> float:
    for candidate in (material.solid_density, material.density):
        value = to_number(candidate)
        if value:
            return value
    return DEFAULT_DENSITY


def _mass(item: LineItem) -> float:
    return max(0.0, to_number(item.percentage))


def _pairs(
    items: Iterable[LineItem], catalog: Mapping[int, RawMaterial]
) -> List[Tuple[float, RawMaterial]]:
    return [(_mass(item), lookup(catalog, item.material_id)) for item in items]


# ─────────────────────────────────────────────────────────
# Metrics
# ─────────────────────────────────────────────────────────


def total_percentage(items: Iterable[LineItem]) -> float:
    return sum(to_number(item.percentage) for item in items)


def total_volume(items: Iterable[LineItem], catalog: Mapping[int, RawMaterial]) -> float:
    return sum(mass / effective_density(material) for mass, material in _pairs(items, catalog))


def total_solid(items: Iterable[LineItem], catalog: Mapping[int, RawMaterial]) -> float:
    return sum(
        mass * effective_solids(material) / 100 for mass, material in _pairs(items, catalog)
    )


def solid_volume(items: Iterable[LineItem], catalog: Mapping[int, RawMaterial]) -> float:
    return sum(
        mass * effective_solids(material) / 100 / solid_phase_density(material)
        for mass, material in _pairs(items, catalog)
    )


def solid_volume_ratio(items: Sequence[LineItem], catalog: Mapping[int, RawMaterial]) -> float:
    """SVR in percent, clamped to [0, 100]."""
    ratio = safe_ratio(solid_volume(items, catalog), total_volume(items, catalog)) * 100
    return max(0.0, min(100.0, ratio))


def pigment_and_binder_volume(
    items: Iterable[LineItem], catalog: Mapping[int, RawMaterial]
) -> Tuple[float, float]:
    """Return ``(pigment_volume, binder_volume)``; General materials are ignored."""
    pigment = 0.0
    binder = 0.0
    for mass, material in _pairs(items, catalog):
        if mass <= 0:
            continue
        if material.subcategory == EXTENDER:
            pigment += mass / effective_density(material)
        elif material.subcategory == RESIN:
            binder += mass * binder_solids(material) / 100 / binder_solid_density(material)
    return pigment, binder


def pigment_volume_concentration(
    items: Sequence[LineItem], catalog: Mapping[int, RawMaterial]
) -> float:
    pigment, binder = pigment_and_binder_volume(items, catalog)
    return safe_ratio(pigment, pigment + binder) * 100


def critical_pvc(items: Iterable[LineItem], catalog: Mapping[int, RawMaterial]) -> float:
    """Heuristic CPVC: a fixed 52 when any extender is present, else 0."""
    has_extender = any(
        lookup(catalog, item.material_id).subcategory == EXTENDER for item in items
    )
    return CPVC_EXTENDER_DEFAULT if has_extender else 0.0


def paint_density(items: Sequence[LineItem], catalog: Mapping[int, RawMaterial]) -> float:
    mass = sum(_mass(item) for item in items)
    return safe_ratio(mass, total_volume(items, catalog))


def production_cost_per_liter(
    items: Sequence[LineItem], catalog: Mapping[int, RawMaterial]
) -> float:
    invested = sum(
        mass * max(0.0, to_number(material.purchase_cost))
        for mass, material in _pairs(items, catalog)
    )
    return invested / 100 * paint_density(items, catalog)


def compute_metrics(
    items: Sequence[LineItem], catalog: Mapping[int, RawMaterial]
) -> FormulationMetrics:
    items = list(items)
    pigment, binder = pigment_and_binder_volume(items, catalog)
    return FormulationMetrics(
        total_percentage=total_percentage(items),
        total_volume=total_volume(items, catalog),
        total_solid=total_solid(items, catalog),
        solid_volume=solid_volume(items, catalog),
        pigment_volume=pigment,
        binder_volume=binder,
        svr=solid_volume_ratio(items, catalog),
        pvc=pigment_volume_concentration(items, catalog),
        cpvc=critical_pvc(items, catalog),
        density=paint_density(items, catalog),
        production_cost_per_liter=production_cost_per_liter(items, catalog),
    )


# ─────────────────────────────────────────────────────────
# Input cleaning
# ─────────────────────────────────────────────────────────


def clean_percentage(value: Any, *, label: str = "Percentage", clamp_negative: bool = False) -> Any:
    """Sanitize a typed percentage; numeric values must lie in [0, 100].

    Non-numeric text is returned untouched (it reads as 0 everywhere).
    """
    value = strip_leading_zero(value)
    if not is_numeric(value):
        return value
    number = to_number(value)
    if number < 0:
        if clamp_negative:
            return 0.0
        raise ValidationFailure(f"{label} cannot be negative")
    if number > 100:
        raise ValidationFailure(f"{label} cannot be greater than 100")
    return value


def clean_count(value: Any, *, label: str) -> int:
    value = strip_leading_zero(value)
    if value is None or (isinstance(value, str) and not value.strip()):
        return 0
    if not is_numeric(value):
        raise ValidationFailure(f"{label} must be a whole number")
    number = to_number(value)
    if number < 0:
        raise ValidationFailure(f"{label} cannot be negative")
    if number != int(number):
        raise ValidationFailure(f"{label} must be a whole number")
    return int(number)


def renumber(items: Sequence[LineItem]) -> List[LineItem]:
    return [replace(item, sequence=index) for index, item in enumerate(items, start=1)]


# ─────────────────────────────────────────────────────────
# Formulation
# ─────────────────────────────────────────────────────────


@dataclass
class Formulation:
    """An ordered recipe for one master product.

    Mutating methods validate first and then swap in a new ``items`` list,
    so a rejected edit leaves the formulation exactly as it was.
    """

    master_product_id: Optional[int] = None
    items: List[LineItem] = field(default_factory=list)
    mixing_ratio_part: float = 0.0

    def index_of(self, item_id: str) -> int:
        for index, item in enumerate(self.items):
            if item.item_id == item_id:
                return index
        raise ValidationFailure("Line item not found")

    def get_item(self, item_id: str) -> LineItem:
        return self.items[self.index_of(item_id)]

    def add_item(self, material_id: int, catalog: Mapping[int, RawMaterial]) -> LineItem:
        if not material_id:
            raise ValidationFailure("Please select a raw material first")
        material = catalog.get(material_id)
        if material is None:
            raise ValidationFailure("Product not found")
        already_added = any(item.material_id == material_id for item in self.items)
        if already_added and not material.can_repeat:
            raise ValidationFailure("Product already added")

        item = LineItem(material_id=material_id, sequence=len(self.items) + 1)
        self.items = [*self.items, item]
        return item

    def remove_item(self, item_id: str) -> None:
        index = self.index_of(item_id)
        self.items = self.items[:index] + self.items[index + 1 :]

    def update_item(self, item_id: str, field_name: str, value: Any) -> LineItem:
        """Overwrite one editable field; other items are never touched."""
        attr = resolve_field(field_name)
        if attr not in EDITABLE_FIELDS:
            raise ValidationFailure(f"{field_name} cannot be edited directly")
        index = self.index_of(item_id)

        if attr == "percentage":
            cleaned = clean_percentage(value)
        else:
            cleaned = clean_count(value, label="Waiting time" if attr == "waiting_time" else "Sequence")

        updated = replace(self.items[index], **{attr: cleaned})
        self.items = [*self.items[:index], updated, *self.items[index + 1 :]]
        return updated

    def reorder(self, item_id: str, new_index: int) -> None:
        """Move an item and renumber every sequence by position."""
        old_index = self.index_of(item_id)
        if not 0 <= new_index < len(self.items):
            raise ValidationFailure("Target position is out of range")
        items = list(self.items)
        items.insert(new_index, items.pop(old_index))
        self.items = renumber(items)

    def metrics(self, catalog: Mapping[int, RawMaterial]) -> FormulationMetrics:
        return compute_metrics(self.items, catalog)

    def total_percentage(self) -> float:
        return total_percentage(self.items)

    def total_percentage_sum(self) -> float:
        """Sum of the gross ``total_percentage`` column."""
        return sum(to_number(item.total_percentage) for item in self.items)

    def batch_weights(self, planned_quantity: float) -> List[Tuple[LineItem, float]]:
        """Absolute weight (kg) of every item for a batch of *planned_quantity* kg."""
        quantity = to_number(planned_quantity)
        if quantity <= 0:
            raise ValidationFailure("Planned quantity must be greater than 0")
        return [(item, to_number(item.percentage) / 100 * quantity) for item in self.items]

    def copy_items(self) -> List[Dict[str, Any]]:
        if not self.items:
            raise ValidationFailure("No items to copy")
        copied = []
        for item in self.items:
            data = asdict(item)
            data.pop("item_id")
            copied.append(data)
        return copied

    def paste_items(self, copied: Sequence[Mapping[str, Any]]) -> None:
        if not copied:
            raise ValidationFailure("No data in clipboard")
        try:
            pasted = [
                LineItem(**{key: value for key, value in row.items() if key != "item_id"})
                for row in copied
            ]
        except TypeError as exc:
            raise ValidationFailure("Failed to paste") from exc
        self.items = pasted


__all__ = [
    "BASE",
    "CPVC_EXTENDER_DEFAULT",
    "EXTENDER",
    "Formulation",
    "FormulationMetrics",
    "GENERAL",
    "HARDENER",
    "LineItem",
    "RESIN",
    "RawMaterial",
    "SUBCATEGORIES",
    "compute_metrics",
    "effective_density",
    "effective_solids",
    "binder_solids",
    "solid_phase_density",
]
