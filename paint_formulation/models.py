from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

from .formulation import GENERAL, RawMaterial

Base = declarative_base()

RAW_MATERIAL = "RM"
FINISHED_GOOD = "FG"


class MasterProduct(Base):
    """Raw materials (RM) and finished goods (FG) share one master table."""

    __tablename__ = "master_products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    product_type = Column(String, nullable=False, default=RAW_MATERIAL)
    subcategory = Column(String, nullable=False, default=GENERAL)

    # Raw-material technical data
    density = Column(Float, nullable=True)
    solids_percent = Column(Float, nullable=True)
    solid_density = Column(Float, nullable=True)
    oil_absorption = Column(Float, nullable=True)
    can_repeat = Column(Boolean, nullable=False, default=False)
    purchase_cost = Column(Float, nullable=False, default=0.0)

    # Finished-good data, refreshed on every recipe save
    hardener_id = Column(Integer, ForeignKey("master_products.id"), nullable=True)
    fg_density = Column(Float, nullable=True)
    production_cost = Column(Float, nullable=True)
    viscosity = Column(Float, nullable=True)
    water_percentage = Column(Float, nullable=True)

    hardener = relationship("MasterProduct", remote_side=[id])
    bom_lines = relationship(
        "BomLine",
        back_populates="finished_good",
        cascade="all, delete-orphan",
        foreign_keys="BomLine.finished_good_id",
        order_by="BomLine.sequence",
    )

    def to_raw_material(self) -> RawMaterial:
        return RawMaterial(
            id=self.id,
            name=self.name,
            density=self.density,
            solids_percent=self.solids_percent,
            solid_density=self.solid_density,
            oil_absorption=self.oil_absorption,
            subcategory=self.subcategory or GENERAL,
            can_repeat=bool(self.can_repeat),
            purchase_cost=self.purchase_cost or 0.0,
        )


class BomLine(Base):
    __tablename__ = "bom_lines"

    id = Column(Integer, primary_key=True, index=True)
    finished_good_id = Column(Integer, ForeignKey("master_products.id"), nullable=False, index=True)
    raw_material_id = Column(Integer, ForeignKey("master_products.id"), nullable=False)
    percentage_required = Column(Float, nullable=False, default=0.0)
    sequence = Column(Integer, nullable=True)
    waiting_time = Column(Integer, nullable=True)

    finished_good = relationship(
        "MasterProduct", back_populates="bom_lines", foreign_keys=[finished_good_id]
    )


class ProductDevelopment(Base):
    """The current saved recipe for a master product."""

    __tablename__ = "product_developments"

    id = Column(Integer, primary_key=True, index=True)
    master_product_id = Column(Integer, ForeignKey("master_products.id"), nullable=False, index=True)
    product_name = Column(String, nullable=False)
    density = Column(Float, nullable=True)
    viscosity = Column(Float, nullable=True)
    percentage_value = Column(Float, nullable=True)  # water %
    production_cost = Column(Float, nullable=True)
    mixing_ratio_part = Column(Float, nullable=True)
    status = Column(String, nullable=False, default="Incomplete")
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    materials = relationship(
        "ProductDevelopmentMaterial",
        back_populates="development",
        cascade="all, delete-orphan",
        order_by="ProductDevelopmentMaterial.sequence",
    )


class ProductDevelopmentMaterial(Base):
    __tablename__ = "product_development_materials"

    id = Column(Integer, primary_key=True, index=True)
    development_id = Column(
        Integer, ForeignKey("product_developments.id", ondelete="CASCADE"), nullable=False
    )
    material_id = Column(Integer, ForeignKey("master_products.id"), nullable=False)
    percentage = Column(Float, nullable=False, default=0.0)
    total_percentage = Column(Float, nullable=False, default=0.0)
    wt_per_liter = Column(Float, nullable=False, default=0.0)
    sequence = Column(Integer, nullable=False, default=0)
    waiting_time = Column(Integer, nullable=False, default=0)

    development = relationship("ProductDevelopment", back_populates="materials")
