from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .formulation import SUBCATEGORIES, FormulationMetrics, LineItem
from .two_part import MixtureMetrics
from .utils import normalize_recipe_status

CellValue = Union[float, str, None]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─────────────────────────────────────────────────────────
# Catalog
# ─────────────────────────────────────────────────────────


class RawMaterialBase(BaseModel):
    name: str = Field(..., alias="masterProductName", min_length=1)
    density: Optional[float] = Field(default=None, alias="RMDensity", ge=0)
    solids_percent: Optional[float] = Field(default=None, alias="RMSolids", ge=0, le=100)
    solid_density: Optional[float] = Field(default=None, alias="SolidDensity", ge=0)
    oil_absorption: Optional[float] = Field(default=None, alias="OilAbsorption", ge=0)
    subcategory: str = Field("General", alias="Subcategory")
    can_repeat: bool = Field(False, alias="CanBeAddedMultipleTimes")
    purchase_cost: float = Field(0.0, alias="PurchaseCost", ge=0)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("subcategory")
    @classmethod
    def _check_subcategory(cls, value: str) -> str:
        if value not in SUBCATEGORIES:
            raise ValueError(f"Subcategory must be one of {', '.join(SUBCATEGORIES)}")
        return value


class RawMaterialCreate(RawMaterialBase):
    pass


class RawMaterialUpdate(BaseModel):
    name: Optional[str] = Field(default=None, alias="masterProductName", min_length=1)
    density: Optional[float] = Field(default=None, alias="RMDensity", ge=0)
    solids_percent: Optional[float] = Field(default=None, alias="RMSolids", ge=0, le=100)
    solid_density: Optional[float] = Field(default=None, alias="SolidDensity", ge=0)
    oil_absorption: Optional[float] = Field(default=None, alias="OilAbsorption", ge=0)
    subcategory: Optional[str] = Field(default=None, alias="Subcategory")
    can_repeat: Optional[bool] = Field(default=None, alias="CanBeAddedMultipleTimes")
    purchase_cost: Optional[float] = Field(default=None, alias="PurchaseCost", ge=0)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("subcategory")
    @classmethod
    def _check_subcategory(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in SUBCATEGORIES:
            raise ValueError(f"Subcategory must be one of {', '.join(SUBCATEGORIES)}")
        return value


class RawMaterialRead(RawMaterialBase):
    id: int = Field(..., alias="masterProductId")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class FinishedGoodCreate(BaseModel):
    name: str = Field(..., alias="masterProductName", min_length=1)
    subcategory: str = Field("General", alias="Subcategory")
    hardener_id: Optional[int] = Field(default=None, alias="HardenerID", ge=1)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("subcategory")
    @classmethod
    def _check_subcategory(cls, value: str) -> str:
        if value not in SUBCATEGORIES:
            raise ValueError(f"Subcategory must be one of {', '.join(SUBCATEGORIES)}")
        return value


class FinishedGoodRead(FinishedGoodCreate):
    id: int = Field(..., alias="masterProductId")
    fg_density: Optional[float] = Field(default=None, alias="density")
    production_cost: Optional[float] = Field(default=None, alias="productionCost")
    viscosity: Optional[float] = None
    water_percentage: Optional[float] = Field(default=None, alias="waterPercentage")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class BomItem(BaseModel):
    raw_material_id: int = Field(..., alias="RawMaterialID", ge=1)
    percentage_required: float = Field(0.0, alias="PercentageRequired", ge=0)
    sequence: Optional[int] = Field(default=None, alias="Sequence", ge=0)
    waiting_time: Optional[int] = Field(default=None, alias="WaitingTime", ge=0)

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ─────────────────────────────────────────────────────────
# Line items & metrics
# ─────────────────────────────────────────────────────────


class LineItemSchema(CamelModel):
    item_id: Optional[str] = None
    material_id: int = Field(..., ge=1)
    percentage: CellValue = ""
    total_percentage: CellValue = ""
    wt_per_liter: CellValue = Field("", alias="wtInLtr")
    sequence: int = Field(1, ge=0)
    waiting_time: int = Field(0, ge=0)

    def to_line_item(self) -> LineItem:
        values = dict(
            material_id=self.material_id,
            percentage="" if self.percentage is None else self.percentage,
            total_percentage="" if self.total_percentage is None else self.total_percentage,
            wt_per_liter="" if self.wt_per_liter is None else self.wt_per_liter,
            sequence=self.sequence,
            waiting_time=self.waiting_time,
        )
        if self.item_id:
            values["item_id"] = self.item_id
        return LineItem(**values)

    @classmethod
    def from_line_item(cls, item: LineItem) -> "LineItemSchema":
        return cls(
            item_id=item.item_id,
            material_id=item.material_id,
            percentage=item.percentage,
            total_percentage=item.total_percentage,
            wt_per_liter=item.wt_per_liter,
            sequence=item.sequence,
            waiting_time=item.waiting_time,
        )


class MetricsRead(CamelModel):
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

    @classmethod
    def from_metrics(cls, metrics: FormulationMetrics) -> "MetricsRead":
        return cls(**vars(metrics))


class FormulationMetricsRequest(CamelModel):
    items: List[LineItemSchema] = Field(default_factory=list)
    planned_quantity: Optional[float] = Field(default=None, gt=0)


class BatchWeight(CamelModel):
    item_id: str
    material_id: int
    weight_kg: float


class FormulationMetricsResponse(CamelModel):
    metrics: MetricsRead
    batch_weights: List[BatchWeight] = Field(default_factory=list)


class MixtureMetricsRead(CamelModel):
    base: MetricsRead
    hardener: MetricsRead
    svr: float = 0.0
    pvc: float = 0.0
    cpvc: float = 0.0
    density: float = 0.0
    production_cost_per_liter: float = 0.0

    @classmethod
    def from_mixture(cls, mixture: MixtureMetrics) -> "MixtureMetricsRead":
        return cls(
            base=MetricsRead.from_metrics(mixture.base),
            hardener=MetricsRead.from_metrics(mixture.hardener),
            svr=mixture.svr,
            pvc=mixture.pvc,
            cpvc=mixture.cpvc,
            density=mixture.density,
            production_cost_per_liter=mixture.production_cost_per_liter,
        )


# ─────────────────────────────────────────────────────────
# Two-part state
# ─────────────────────────────────────────────────────────


class TwoPartState(CamelModel):
    base_master_product_id: Optional[int] = Field(default=None, ge=1)
    hardener_master_product_id: Optional[int] = Field(default=None, ge=1)
    base: List[LineItemSchema] = Field(default_factory=list)
    hardener: Optional[List[LineItemSchema]] = None
    base_ratio: float = Field(0.0, ge=0)
    hardener_ratio: float = Field(0.0, ge=0)

    @model_validator(mode="after")
    def _hardener_needs_items_list(self) -> "TwoPartState":
        if self.hardener_master_product_id and self.hardener is None:
            self.hardener = []
        return self


class TwoPartEditRequest(CamelModel):
    state: TwoPartState
    item_id: str
    field: Literal["percentage", "totalPercentage", "sequence", "waitingTime"]
    value: CellValue = ""
    is_hardener: bool = False


class ColumnTotalRequest(CamelModel):
    state: TwoPartState
    new_total: CellValue
    is_hardener: bool = False


class TwoPartStateResponse(CamelModel):
    state: TwoPartState
    base_total: float
    hardener_total: float
    hardener_display_percentages: List[float] = Field(default_factory=list)
    mixture: MixtureMetricsRead


# ─────────────────────────────────────────────────────────
# Recipes
# ─────────────────────────────────────────────────────────


class RecipeMaterial(CamelModel):
    material_id: int = Field(..., ge=1)
    percentage: float = 0.0
    total_percentage: float = 0.0
    wt_per_liter: float = Field(0.0, alias="wtInLtr")
    sequence: int = Field(0, ge=0)
    waiting_time: int = Field(0, ge=0)

    model_config = ConfigDict(from_attributes=True)


class RecipePayload(CamelModel):
    """A recipe snapshot as saved and as returned from storage."""

    master_product_id: int = Field(..., ge=1)
    density: Optional[float] = Field(default=None, ge=0)
    viscosity: Optional[float] = Field(default=None, ge=0)
    percentage_value: Optional[float] = Field(default=None, ge=0, le=100)
    production_cost: Optional[float] = Field(default=None, ge=0)
    mixing_ratio_part: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    materials: List[RecipeMaterial] = Field(default_factory=list)
    status: str = "Incomplete"

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Optional[str]) -> str:
        return normalize_recipe_status(value)


class RecipeRead(RecipePayload):
    development_id: int
    product_name: str
    updated_at: Optional[datetime] = None


class SaveRecipeRequest(CamelModel):
    master_product_id: Optional[int] = Field(default=None, ge=1)
    items: List[LineItemSchema] = Field(default_factory=list)
    viscosity: Optional[float] = Field(default=None, ge=0)
    percentage_value: Optional[float] = Field(
        default=None,
        ge=0,
        le=100,
        description="Water percentage",
    )
    mixing_ratio_part: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class RecipeLoadResponse(CamelModel):
    source: Literal["saved", "bom", "empty"]
    master_product_id: int
    density: Optional[float] = None
    viscosity: Optional[float] = None
    percentage_value: Optional[float] = None
    production_cost: Optional[float] = None
    mixing_ratio_part: Optional[float] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    items: List[LineItemSchema] = Field(default_factory=list)
    metrics: MetricsRead


class TwoPartSaveRequest(CamelModel):
    state: TwoPartState
    notes: Optional[str] = None


class TwoPartSaveResponse(CamelModel):
    base: RecipeRead
    hardener: Optional[RecipeRead] = None
    hardener_id: Optional[int] = None


class MixingRatios(CamelModel):
    base_ratio: float
    hardener_ratio: float
