from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .config import database_url, seed_catalog_enabled
from .formulation import BASE, EXTENDER, GENERAL, HARDENER, RESIN
from .logging_setup import get_logger
from .models import FINISHED_GOOD, RAW_MATERIAL, Base, MasterProduct

logger = get_logger(__name__)

DATABASE_URL = database_url()

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# name, subcategory, density, solids %, solid density, oil absorption, can repeat, cost
DEFAULT_RAW_MATERIALS = [
    ("Titanium Dioxide Rutile", EXTENDER, 4.1, 100.0, None, 18.0, False, 310.0),
    ("Calcite Powder", EXTENDER, 2.7, 100.0, None, 22.0, False, 12.0),
    ("Talc", EXTENDER, 2.75, 100.0, None, 35.0, False, 18.0),
    ("Long Oil Alkyd Resin", RESIN, 0.98, 70.0, 1.1, None, False, 145.0),
    ("Epoxy Resin 75%", RESIN, 1.1, 75.0, 1.17, None, False, 260.0),
    ("Polyamide Hardener", HARDENER, 0.97, 60.0, None, None, False, 240.0),
    ("Mineral Turpentine Oil", GENERAL, 0.78, 0.0, None, None, False, 68.0),
    ("Xylene", GENERAL, 0.87, 0.0, None, None, False, 95.0),
    ("Water", GENERAL, 1.0, 0.0, None, None, True, 0.0),
]

DEFAULT_FINISHED_GOODS = [
    # name, subcategory, hardener name
    ("Epoxy Primer Hardener", HARDENER, None),
    ("Epoxy Primer Base", BASE, "Epoxy Primer Hardener"),
    ("Synthetic Enamel White", GENERAL, None),
]


def init_db():
    """Create tables if they do not exist"""
    Base.metadata.create_all(bind=engine)
    if seed_catalog_enabled():
        init_catalog()


def init_catalog():
    """Preload a starter raw-material catalog and finished goods when empty"""
    db = SessionLocal()
    try:
        if db.query(MasterProduct).count() > 0:
            return

        for name, subcategory, density, solids, solid_density, oil, repeat, cost in DEFAULT_RAW_MATERIALS:
            db.add(
                MasterProduct(
                    name=name,
                    product_type=RAW_MATERIAL,
                    subcategory=subcategory,
                    density=density,
                    solids_percent=solids,
                    solid_density=solid_density,
                    oil_absorption=oil,
                    can_repeat=repeat,
                    purchase_cost=cost,
                )
            )

        by_name = {}
        for name, subcategory, hardener_name in DEFAULT_FINISHED_GOODS:
            product = MasterProduct(
                name=name,
                product_type=FINISHED_GOOD,
                subcategory=subcategory,
                hardener=by_name.get(hardener_name),
            )
            db.add(product)
            by_name[name] = product

        db.commit()
        logger.info(
            "Seeded catalog with %d raw materials and %d finished goods",
            len(DEFAULT_RAW_MATERIALS),
            len(DEFAULT_FINISHED_GOODS),
        )
    finally:
        db.close()
