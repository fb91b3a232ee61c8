"""Recipe loading and saving: saved snapshot -> BOM fallback -> empty."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import PartialSaveError, PersistenceError, RecordNotFound, SaveValidationError, ValidationFailure
from .formulation import Formulation, LineItem, RawMaterial, compute_metrics, effective_density, lookup
from .logging_setup import get_logger
from .models import (
    FINISHED_GOOD,
    RAW_MATERIAL,
    BomLine,
    MasterProduct,
    ProductDevelopment,
    ProductDevelopmentMaterial,
)
from .schemas import BomItem, RecipeMaterial, RecipePayload, RecipeRead
from .two_part import TwoPartSystem
from .utils import recipe_status, to_number

logger = get_logger(__name__)

# A BOM whose percentages add up to no more than this is stored as fractions.
BOM_FRACTION_THRESHOLD = 1.05
DEFAULT_MIXING_RATIO = 1.0


@dataclass
class LoadedRecipe:
    source: str
    formulation: Formulation
    record: Optional[RecipeRead] = None


# ─────────────────────────────────────────────────────────
# Catalog & BOM
# ─────────────────────────────────────────────────────────


def load_catalog(db: Session) -> Dict[int, RawMaterial]:
    """Return every raw material keyed by master product id."""
    products = db.query(MasterProduct).filter(MasterProduct.product_type == RAW_MATERIAL).all()
    return {product.id: product.to_raw_material() for product in products}


def get_finished_good(db: Session, master_product_id: int) -> MasterProduct:
    product = db.get(MasterProduct, master_product_id)
    if product is None or product.product_type != FINISHED_GOOD:
        raise RecordNotFound("Master product not found")
    return product


def get_bom(db: Session, finished_good_id: int) -> List[BomItem]:
    lines = (
        db.query(BomLine)
        .filter(BomLine.finished_good_id == finished_good_id)
        .order_by(BomLine.sequence.asc(), BomLine.id.asc())
        .all()
    )
    return [
        BomItem(
            raw_material_id=line.raw_material_id,
            percentage_required=line.percentage_required,
            sequence=line.sequence,
            waiting_time=line.waiting_time,
        )
        for line in lines
    ]


def replace_bom(db: Session, finished_good_id: int, items: Sequence[BomItem]) -> List[BomItem]:
    product = get_finished_good(db, finished_good_id)
    catalog = load_catalog(db)
    _check_known_materials(catalog, (item.raw_material_id for item in items))
    try:
        product.bom_lines = [
            BomLine(
                raw_material_id=item.raw_material_id,
                percentage_required=item.percentage_required,
                sequence=item.sequence,
                waiting_time=item.waiting_time,
            )
            for item in items
        ]
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to replace BOM for master product %s", finished_good_id)
        raise PersistenceError("Failed to save BOM") from exc
    logger.info("Replaced BOM for master product %s (%d lines)", finished_good_id, len(items))
    return get_bom(db, finished_good_id)


def normalize_bom(bom_items: Sequence[BomItem]) -> List[LineItem]:
    """Map BOM rows to line items, scaling fractional BOMs (sum <= 1.05) to percent."""
    items = [
        LineItem(
            material_id=row.raw_material_id,
            percentage=to_number(row.percentage_required),
            total_percentage=0.0,
            wt_per_liter=0.0,
            sequence=row.sequence or index,
            waiting_time=row.waiting_time or 0,
        )
        for index, row in enumerate(bom_items, start=1)
    ]
    total = sum(item.percentage for item in items)
    if 0 < total <= BOM_FRACTION_THRESHOLD:
        for item in items:
            item.percentage = round(item.percentage * 100, 3)
    return items


def _check_known_materials(catalog: Mapping[int, RawMaterial], material_ids: Iterable[int]) -> None:
    unknown = sorted({material_id for material_id in material_ids if material_id not in catalog})
    if unknown:
        raise ValidationFailure(f"Unknown raw material id(s): {', '.join(map(str, unknown))}")


# ─────────────────────────────────────────────────────────
# Loading
# ─────────────────────────────────────────────────────────


def get_latest_development(db: Session, master_product_id: int) -> Optional[ProductDevelopment]:
    return (
        db.query(ProductDevelopment)
        .filter(ProductDevelopment.master_product_id == master_product_id)
        .order_by(ProductDevelopment.created_at.desc(), ProductDevelopment.id.desc())
        .first()
    )


def development_to_read(development: ProductDevelopment) -> RecipeRead:
    return RecipeRead(
        development_id=development.id,
        product_name=development.product_name,
        updated_at=development.updated_at,
        master_product_id=development.master_product_id,
        density=development.density,
        viscosity=development.viscosity,
        percentage_value=development.percentage_value,
        production_cost=development.production_cost,
        mixing_ratio_part=development.mixing_ratio_part,
        notes=development.notes,
        status=development.status,
        materials=[
            RecipeMaterial(
                material_id=row.material_id,
                percentage=row.percentage,
                total_percentage=row.total_percentage or 0.0,
                wt_per_liter=row.wt_per_liter or 0.0,
                sequence=row.sequence,
                waiting_time=row.waiting_time or 0,
            )
            for row in development.materials
        ],
    )


def saved_material_to_item(row: RecipeMaterial, catalog: Mapping[int, RawMaterial]) -> LineItem:
    """Rebuild a line item, recomputing Wt/Ltr when it was stored as 0."""
    total = to_number(row.total_percentage)
    wt_per_liter = to_number(row.wt_per_liter)
    if wt_per_liter == 0 and total > 0:
        wt_per_liter = total / effective_density(lookup(catalog, row.material_id))
    return LineItem(
        material_id=row.material_id,
        percentage=row.percentage,
        total_percentage=total,
        wt_per_liter=wt_per_liter,
        sequence=row.sequence,
        waiting_time=row.waiting_time,
    )


def load_formulation(
    db: Session, master_product_id: int, catalog: Mapping[int, RawMaterial]
) -> LoadedRecipe:
    """Load the current recipe, falling back to the BOM and then to an empty one."""
    development = get_latest_development(db, master_product_id)
    if development is not None:
        record = development_to_read(development)
        formulation = Formulation(
            master_product_id=master_product_id,
            items=[saved_material_to_item(row, catalog) for row in record.materials],
            mixing_ratio_part=to_number(record.mixing_ratio_part),
        )
        logger.info("Loaded saved recipe %s for master product %s", record.development_id, master_product_id)
        return LoadedRecipe(source="saved", formulation=formulation, record=record)

    bom = get_bom(db, master_product_id)
    if bom:
        logger.info("No saved recipe for master product %s; using BOM", master_product_id)
        return LoadedRecipe(
            source="bom",
            formulation=Formulation(master_product_id=master_product_id, items=normalize_bom(bom)),
        )

    logger.info("No saved recipe or BOM for master product %s", master_product_id)
    return LoadedRecipe(source="empty", formulation=Formulation(master_product_id=master_product_id))


def get_mixing_ratios(db: Session, base_id: int, hardener_id: int) -> Tuple[float, float]:
    """Return the saved mixing ratio parts, defaulting each to 1."""
    ratios = []
    for master_product_id in (base_id, hardener_id):
        development = get_latest_development(db, master_product_id)
        part = to_number(development.mixing_ratio_part) if development is not None else 0.0
        ratios.append(part or DEFAULT_MIXING_RATIO)
    return ratios[0], ratios[1]


# ─────────────────────────────────────────────────────────
# Saving
# ─────────────────────────────────────────────────────────


def build_save_payload(
    formulation: Formulation,
    catalog: Mapping[int, RawMaterial],
    *,
    viscosity: Optional[float] = None,
    percentage_value: Optional[float] = None,
    notes: Optional[str] = None,
) -> RecipePayload:
    """Turn an in-memory formulation into the persisted snapshot shape."""
    if not formulation.master_product_id:
        raise SaveValidationError("Please select a Master Product")
    if percentage_value is not None and not 0 <= percentage_value <= 100:
        raise SaveValidationError("Water Percentage must be between 0 and 100")

    metrics = compute_metrics(formulation.items, catalog)
    return RecipePayload(
        master_product_id=formulation.master_product_id,
        density=metrics.density,
        viscosity=viscosity,
        percentage_value=percentage_value,
        production_cost=metrics.production_cost_per_liter,
        mixing_ratio_part=formulation.mixing_ratio_part,
        notes=notes,
        materials=[
            RecipeMaterial(
                material_id=item.material_id,
                percentage=to_number(item.percentage),
                total_percentage=to_number(item.total_percentage),
                wt_per_liter=to_number(item.wt_per_liter),
                sequence=item.sequence,
                waiting_time=item.waiting_time,
            )
            for item in formulation.items
        ],
        status=recipe_status(item.percentage for item in formulation.items),
    )


def save_recipe(db: Session, payload: RecipePayload) -> RecipeRead:
    """Overwrite the current snapshot for the master product, or create it."""
    product = get_finished_good(db, payload.master_product_id)
    _check_known_materials(load_catalog(db), (row.material_id for row in payload.materials))

    try:
        development = get_latest_development(db, payload.master_product_id)
        if development is None:
            development = ProductDevelopment(master_product_id=product.id)
            db.add(development)

        development.product_name = product.name
        development.density = payload.density
        development.viscosity = payload.viscosity
        development.percentage_value = payload.percentage_value
        development.production_cost = payload.production_cost
        development.mixing_ratio_part = payload.mixing_ratio_part
        development.status = payload.status
        development.notes = payload.notes
        development.materials = [
            ProductDevelopmentMaterial(
                material_id=row.material_id,
                percentage=row.percentage,
                total_percentage=row.total_percentage,
                wt_per_liter=row.wt_per_liter,
                sequence=row.sequence,
                waiting_time=row.waiting_time,
            )
            for row in payload.materials
        ]

        if payload.density:
            product.fg_density = payload.density
        if payload.production_cost is not None:
            product.production_cost = payload.production_cost
        if payload.viscosity is not None:
            product.viscosity = payload.viscosity
        if payload.percentage_value is not None:
            product.water_percentage = payload.percentage_value

        db.commit()
        db.refresh(development)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to save recipe for master product %s", payload.master_product_id)
        raise PersistenceError("Failed to save recipe") from exc

    logger.info(
        "Saved recipe %s for master product %s (%d materials, %s)",
        development.id,
        payload.master_product_id,
        len(payload.materials),
        payload.status,
    )
    return development_to_read(development)


def save_two_part(
    db: Session, system: TwoPartSystem, *, notes: Optional[str] = None
) -> Tuple[RecipeRead, Optional[RecipeRead]]:
    """Validate and save base then hardener, then link the hardener on the base.

    The two saves are separate transactions: a hardener failure leaves the
    base saved and is reported as :class:`PartialSaveError`.
    """
    try:
        system.validate_for_save()
    except SaveValidationError as exc:
        logger.warning("Rejected two-part save: %s", exc.message)
        raise

    hardener = system.hardener
    if hardener is not None:
        if not hardener.master_product_id:
            raise SaveValidationError("Select the hardener master product")
        get_finished_good(db, hardener.master_product_id)

    base_payload = build_save_payload(system.base, system.catalog, notes=notes)
    hardener_payload = None
    if hardener is not None and hardener.items:
        hardener_payload = build_save_payload(hardener, system.catalog, notes=notes)

    base_record = save_recipe(db, base_payload)

    hardener_record = None
    if hardener_payload is not None:
        try:
            hardener_record = save_recipe(db, hardener_payload)
        except (PersistenceError, RecordNotFound, ValidationFailure) as exc:
            logger.error(
                "Hardener save failed after base recipe %s was saved: %s",
                base_record.development_id,
                exc,
            )
            raise PartialSaveError(
                f"Base recipe saved but hardener was not: {exc}",
                base_development_id=base_record.development_id,
            ) from exc

    link_hardener(db, system.base.master_product_id, hardener.master_product_id if hardener else None)
    return base_record, hardener_record


def link_hardener(db: Session, base_id: int, hardener_id: Optional[int]) -> MasterProduct:
    base = get_finished_good(db, base_id)
    if hardener_id is not None:
        get_finished_good(db, hardener_id)
    try:
        base.hardener_id = hardener_id
        db.commit()
        db.refresh(base)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to link hardener %s to base %s", hardener_id, base_id)
        raise PersistenceError("Failed to update hardener link") from exc
    logger.info("Linked hardener %s to base %s", hardener_id, base_id)
    return base


__all__ = [
    "LoadedRecipe",
    "build_save_payload",
    "get_bom",
    "get_mixing_ratios",
    "link_hardener",
    "load_catalog",
    "load_formulation",
    "normalize_bom",
    "replace_bom",
    "save_recipe",
    "save_two_part",
]
