from contextlib import asynccontextmanager
from typing import Dict, Generator, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from .database import SessionLocal, init_db
from .exceptions import FormulationError, PartialSaveError
from .formulation import Formulation, RawMaterial
from .logging_setup import configure_logging, get_logger
from .models import FINISHED_GOOD, RAW_MATERIAL, MasterProduct
from .recipes import (
    build_save_payload,
    get_bom,
    get_finished_good,
    get_mixing_ratios,
    load_catalog,
    load_formulation,
    replace_bom,
    save_recipe,
    save_two_part,
)
from .schemas import (
    BatchWeight,
    BomItem,
    ColumnTotalRequest,
    FinishedGoodCreate,
    FinishedGoodRead,
    FormulationMetricsRequest,
    FormulationMetricsResponse,
    LineItemSchema,
    MetricsRead,
    MixingRatios,
    MixtureMetricsRead,
    RawMaterialCreate,
    RawMaterialRead,
    RawMaterialUpdate,
    RecipeLoadResponse,
    RecipeRead,
    SaveRecipeRequest,
    TwoPartEditRequest,
    TwoPartSaveRequest,
    TwoPartSaveResponse,
    TwoPartState,
    TwoPartStateResponse,
)
from .two_part import TwoPartSystem

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()  # Create tables and preload the starter catalog
    yield


app = FastAPI(
    title="Paint Formulation API",
    description="Recipe metrics, base/hardener recalculation and recipe storage for paint formulations.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FormulationError)
async def formulation_error_handler(request: Request, exc: FormulationError) -> JSONResponse:
    """Report engine and recipe failures as ``{"detail": message}``."""
    content = {"detail": exc.message}
    if isinstance(exc, PartialSaveError):
        content["baseDevelopmentId"] = exc.base_development_id
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=content)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _raw_material_read(product: MasterProduct) -> RawMaterialRead:
    return RawMaterialRead(
        id=product.id,
        name=product.name,
        density=product.density,
        solids_percent=product.solids_percent,
        solid_density=product.solid_density,
        oil_absorption=product.oil_absorption,
        subcategory=product.subcategory,
        can_repeat=bool(product.can_repeat),
        purchase_cost=product.purchase_cost or 0.0,
    )


def _finished_good_read(product: MasterProduct) -> FinishedGoodRead:
    return FinishedGoodRead(
        id=product.id,
        name=product.name,
        subcategory=product.subcategory,
        hardener_id=product.hardener_id,
        fg_density=product.fg_density,
        production_cost=product.production_cost,
        viscosity=product.viscosity,
        water_percentage=product.water_percentage,
    )


def _get_raw_material(db: Session, material_id: int) -> MasterProduct:
    product = db.get(MasterProduct, material_id)
    if product is None or product.product_type != RAW_MATERIAL:
        raise HTTPException(status_code=404, detail="Raw material not found")
    return product


def _name_taken(db: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(MasterProduct).filter(func.lower(MasterProduct.name) == name.strip().lower())
    if exclude_id is not None:
        query = query.filter(MasterProduct.id != exclude_id)
    return query.first() is not None


def _system_from_state(state: TwoPartState, catalog: Dict[int, RawMaterial]) -> TwoPartSystem:
    base = Formulation(
        master_product_id=state.base_master_product_id,
        items=[item.to_line_item() for item in state.base],
    )
    hardener = None
    if state.hardener is not None:
        hardener = Formulation(
            master_product_id=state.hardener_master_product_id,
            items=[item.to_line_item() for item in state.hardener],
        )
    return TwoPartSystem(
        catalog,
        base=base,
        hardener=hardener,
        base_ratio=state.base_ratio,
        hardener_ratio=state.hardener_ratio,
    )


def _two_part_response(system: TwoPartSystem) -> TwoPartStateResponse:
    hardener = system.hardener
    state = TwoPartState(
        base_master_product_id=system.base.master_product_id,
        hardener_master_product_id=hardener.master_product_id if hardener else None,
        base=[LineItemSchema.from_line_item(item) for item in system.base.items],
        hardener=[LineItemSchema.from_line_item(item) for item in hardener.items] if hardener else None,
        base_ratio=system.base_ratio,
        hardener_ratio=system.hardener_ratio,
    )
    return TwoPartStateResponse(
        state=state,
        base_total=system.base_total(),
        hardener_total=hardener.total_percentage_sum() if hardener else 0.0,
        hardener_display_percentages=system.hardener_display_percentages(),
        mixture=MixtureMetricsRead.from_mixture(system.mixture_metrics()),
    )


@app.get("/api/health")
def health_check():
    return {"status": "running"}


# ─────────────────────────────────────────────────────────
# Catalog
# ─────────────────────────────────────────────────────────


@app.get("/api/raw-materials", response_model=List[RawMaterialRead])
def get_raw_materials(db: Session = Depends(get_db)) -> List[RawMaterialRead]:
    products = (
        db.query(MasterProduct)
        .filter(MasterProduct.product_type == RAW_MATERIAL)
        .order_by(MasterProduct.name.asc())
        .all()
    )
    return [_raw_material_read(product) for product in products]


@app.get("/api/raw-materials/{material_id}", response_model=RawMaterialRead)
def get_raw_material(material_id: int, db: Session = Depends(get_db)) -> RawMaterialRead:
    return _raw_material_read(_get_raw_material(db, material_id))


@app.post("/api/raw-materials", response_model=RawMaterialRead, status_code=201)
def create_raw_material(payload: RawMaterialCreate, db: Session = Depends(get_db)) -> RawMaterialRead:
    """Add a raw material to the catalog."""
    if _name_taken(db, payload.name):
        raise HTTPException(status_code=409, detail="Material already exists")

    product = MasterProduct(product_type=RAW_MATERIAL, **payload.model_dump())
    db.add(product)
    db.commit()
    db.refresh(product)
    logger.info("Created raw material %s (%s)", product.id, product.name)
    return _raw_material_read(product)


@app.put("/api/raw-materials/{material_id}", response_model=RawMaterialRead)
def update_raw_material(
    material_id: int,
    payload: RawMaterialUpdate,
    db: Session = Depends(get_db),
) -> RawMaterialRead:
    """Update technical data or cost of a catalog entry."""
    product = _get_raw_material(db, material_id)

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name") and _name_taken(db, changes["name"], exclude_id=material_id):
        raise HTTPException(status_code=409, detail="Material name already in use")

    for attr, value in changes.items():
        if attr in ("name", "subcategory", "can_repeat", "purchase_cost") and value is None:
            continue
        setattr(product, attr, value)

    db.commit()
    db.refresh(product)
    return _raw_material_read(product)


@app.post("/api/finished-goods", response_model=FinishedGoodRead, status_code=201)
def create_finished_good(payload: FinishedGoodCreate, db: Session = Depends(get_db)) -> FinishedGoodRead:
    if _name_taken(db, payload.name):
        raise HTTPException(status_code=409, detail="Master product already exists")
    if payload.hardener_id is not None:
        get_finished_good(db, payload.hardener_id)

    product = MasterProduct(
        product_type=FINISHED_GOOD,
        name=payload.name,
        subcategory=payload.subcategory,
        hardener_id=payload.hardener_id,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return _finished_good_read(product)


@app.get("/api/finished-goods/{master_product_id}", response_model=FinishedGoodRead)
def get_finished_good_detail(master_product_id: int, db: Session = Depends(get_db)) -> FinishedGoodRead:
    return _finished_good_read(get_finished_good(db, master_product_id))


@app.get("/api/boms/{finished_good_id}", response_model=List[BomItem])
def get_bom_lines(finished_good_id: int, db: Session = Depends(get_db)) -> List[BomItem]:
    get_finished_good(db, finished_good_id)
    return get_bom(db, finished_good_id)


@app.put("/api/boms/{finished_good_id}", response_model=List[BomItem])
def replace_bom_lines(
    finished_good_id: int,
    payload: List[BomItem],
    db: Session = Depends(get_db),
) -> List[BomItem]:
    return replace_bom(db, finished_good_id, payload)


# ─────────────────────────────────────────────────────────
# Recipes
# ─────────────────────────────────────────────────────────


@app.get("/api/recipes/ratios/{base_id}/{hardener_id}", response_model=MixingRatios)
def get_recipe_ratios(base_id: int, hardener_id: int, db: Session = Depends(get_db)) -> MixingRatios:
    base_ratio, hardener_ratio = get_mixing_ratios(db, base_id, hardener_id)
    return MixingRatios(base_ratio=base_ratio, hardener_ratio=hardener_ratio)


@app.get("/api/recipes/{master_product_id}", response_model=RecipeLoadResponse)
def get_recipe(master_product_id: int, db: Session = Depends(get_db)) -> RecipeLoadResponse:
    """Load the current recipe (saved snapshot, else BOM, else empty)."""
    get_finished_good(db, master_product_id)
    catalog = load_catalog(db)
    loaded = load_formulation(db, master_product_id, catalog)
    record = loaded.record
    return RecipeLoadResponse(
        source=loaded.source,
        master_product_id=master_product_id,
        density=record.density if record else None,
        viscosity=record.viscosity if record else None,
        percentage_value=record.percentage_value if record else None,
        production_cost=record.production_cost if record else None,
        mixing_ratio_part=record.mixing_ratio_part if record else None,
        notes=record.notes if record else None,
        status=record.status if record else None,
        items=[LineItemSchema.from_line_item(item) for item in loaded.formulation.items],
        metrics=MetricsRead.from_metrics(loaded.formulation.metrics(catalog)),
    )


@app.post("/api/recipes", response_model=RecipeRead, status_code=201)
def create_recipe(payload: SaveRecipeRequest, db: Session = Depends(get_db)) -> RecipeRead:
    """Save a single formulation as the current recipe for its master product."""
    catalog = load_catalog(db)
    formulation = Formulation(
        master_product_id=payload.master_product_id,
        items=[item.to_line_item() for item in payload.items],
        mixing_ratio_part=payload.mixing_ratio_part or 0.0,
    )
    recipe = build_save_payload(
        formulation,
        catalog,
        viscosity=payload.viscosity,
        percentage_value=payload.percentage_value,
        notes=payload.notes,
    )
    return save_recipe(db, recipe)


@app.post("/api/recipes/two-part", response_model=TwoPartSaveResponse, status_code=201)
def create_two_part_recipe(payload: TwoPartSaveRequest, db: Session = Depends(get_db)) -> TwoPartSaveResponse:
    """Save base and hardener snapshots, then link the hardener on the base."""
    system = _system_from_state(payload.state, load_catalog(db))
    base_record, hardener_record = save_two_part(db, system, notes=payload.notes)
    return TwoPartSaveResponse(
        base=base_record,
        hardener=hardener_record,
        hardener_id=system.hardener.master_product_id if system.hardener else None,
    )


# ─────────────────────────────────────────────────────────
# Calculation
# ─────────────────────────────────────────────────────────


@app.post("/api/formulations/metrics", response_model=FormulationMetricsResponse)
def calculate_metrics(
    payload: FormulationMetricsRequest,
    db: Session = Depends(get_db),
) -> FormulationMetricsResponse:
    catalog = load_catalog(db)
    formulation = Formulation(items=[item.to_line_item() for item in payload.items])
    weights: List[BatchWeight] = []
    if payload.planned_quantity is not None:
        weights = [
            BatchWeight(item_id=item.item_id, material_id=item.material_id, weight_kg=weight)
            for item, weight in formulation.batch_weights(payload.planned_quantity)
        ]
    return FormulationMetricsResponse(
        metrics=MetricsRead.from_metrics(formulation.metrics(catalog)),
        batch_weights=weights,
    )


@app.post("/api/formulations/two-part/metrics", response_model=TwoPartStateResponse)
def calculate_two_part_metrics(payload: TwoPartState, db: Session = Depends(get_db)) -> TwoPartStateResponse:
    return _two_part_response(_system_from_state(payload, load_catalog(db)))


@app.post("/api/formulations/two-part/edit", response_model=TwoPartStateResponse)
def edit_two_part(payload: TwoPartEditRequest, db: Session = Depends(get_db)) -> TwoPartStateResponse:
    """Apply one cell edit and return the fully recalculated base and hardener."""
    system = _system_from_state(payload.state, load_catalog(db))
    system.update_item(payload.item_id, payload.field, payload.value, payload.is_hardener)
    return _two_part_response(system)


@app.post("/api/formulations/two-part/column-total", response_model=TwoPartStateResponse)
def set_two_part_column_total(
    payload: ColumnTotalRequest,
    db: Session = Depends(get_db),
) -> TwoPartStateResponse:
    system = _system_from_state(payload.state, load_catalog(db))
    system.set_column_total(payload.new_total, payload.is_hardener)
    return _two_part_response(system)
