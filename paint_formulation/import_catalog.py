"""
Utilities for importing raw materials, finished goods and BOMs from JSON.

Usage:
    python -m paint_formulation.import_catalog              # loads data/catalog.json
    python -m paint_formulation.import_catalog --file path  # load a specific file
    python -m paint_formulation.import_catalog --reset      # replace existing BOM lines

Expected layout::

    {
      "rawMaterials": [{"masterProductName": "Talc", "RMDensity": 2.75, ...}],
      "finishedGoods": [{"masterProductName": "Epoxy Base", "Subcategory": "Base",
                         "hardener": "Epoxy Hardener"}],
      "boms": [{"finishedGood": "Epoxy Base",
                "items": [{"rawMaterial": "Talc", "PercentageRequired": 0.4}]}]
    }
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from sqlalchemy import func

from .database import SessionLocal, init_db
from .logging_setup import configure_logging, get_logger
from .models import FINISHED_GOOD, RAW_MATERIAL, BomLine, MasterProduct
from .schemas import FinishedGoodCreate, RawMaterialCreate

logger = get_logger(__name__)

DATA_DIR = Path(__file__).parent / "data"
DEFAULT_JSON = DATA_DIR / "catalog.json"


def find_master_product(session, name: str) -> Optional[MasterProduct]:
    return (
        session.query(MasterProduct)
        .filter(func.lower(MasterProduct.name) == name.strip().lower())
        .one_or_none()
    )


def upsert_raw_material(session, entry: Mapping[str, Any]) -> MasterProduct:
    """Create or refresh a raw material from a catalog lookup record."""
    payload = RawMaterialCreate.model_validate(entry)
    product = find_master_product(session, payload.name)
    if product is None:
        product = MasterProduct(product_type=RAW_MATERIAL, name=payload.name.strip())
        session.add(product)
    elif product.product_type != RAW_MATERIAL:
        raise ValueError(f"'{payload.name}' already exists as a finished good")

    for attr, value in payload.model_dump(exclude={"name"}).items():
        setattr(product, attr, value)
    session.flush()
    return product


def upsert_finished_good(session, entry: Mapping[str, Any]) -> MasterProduct:
    payload = FinishedGoodCreate.model_validate(entry)
    product = find_master_product(session, payload.name)
    if product is None:
        product = MasterProduct(product_type=FINISHED_GOOD, name=payload.name.strip())
        session.add(product)
    elif product.product_type != FINISHED_GOOD:
        raise ValueError(f"'{payload.name}' already exists as a raw material")
    product.subcategory = payload.subcategory
    session.flush()
    return product


def import_records(data: Mapping[str, Any], *, reset: bool = False) -> Dict[str, int]:
    """Persist catalog records and return counts of what was written."""
    init_db()
    session = SessionLocal()
    counts = {"raw_materials": 0, "finished_goods": 0, "bom_lines": 0}

    try:
        for entry in data.get("rawMaterials", []):
            upsert_raw_material(session, entry)
            counts["raw_materials"] += 1

        finished_goods = {}
        for entry in data.get("finishedGoods", []):
            product = upsert_finished_good(session, entry)
            finished_goods[product.name.lower()] = (product, entry.get("hardener"))
            counts["finished_goods"] += 1

        # Hardeners are linked by name once every finished good exists.
        for product, hardener_name in finished_goods.values():
            if not hardener_name:
                continue
            hardener = find_master_product(session, hardener_name)
            if hardener is None or hardener.product_type != FINISHED_GOOD:
                raise ValueError(f"Unknown hardener '{hardener_name}' for '{product.name}'")
            product.hardener_id = hardener.id

        for bom in data.get("boms", []):
            product = find_master_product(session, bom["finishedGood"])
            if product is None or product.product_type != FINISHED_GOOD:
                raise ValueError(f"Unknown finished good '{bom['finishedGood']}'")
            if reset:
                session.query(BomLine).filter(BomLine.finished_good_id == product.id).delete()

            for index, item in enumerate(bom.get("items", []), start=1):
                material = find_master_product(session, item["rawMaterial"])
                if material is None or material.product_type != RAW_MATERIAL:
                    raise ValueError(f"Unknown raw material '{item['rawMaterial']}'")
                session.add(
                    BomLine(
                        finished_good_id=product.id,
                        raw_material_id=material.id,
                        percentage_required=float(item.get("PercentageRequired", 0.0)),
                        sequence=item.get("Sequence", index),
                        waiting_time=item.get("WaitingTime", 0),
                    )
                )
                counts["bom_lines"] += 1

        session.commit()
    except Exception:
        session.rollback()
        logger.exception("Catalog import failed; nothing was written")
        raise
    finally:
        session.close()

    logger.info(
        "Catalog imported: %(raw_materials)d raw materials, %(finished_goods)d finished goods, "
        "%(bom_lines)d BOM lines",
        counts,
    )
    return counts


def load_json_records(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"JSON catalog file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def parse_cli_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Load raw materials, finished goods and BOMs from JSON into the database."
    )
    parser.add_argument(
        "--file",
        "-f",
        type=Path,
        default=DEFAULT_JSON,
        help=f"Path to the catalog JSON file (default: {DEFAULT_JSON})",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete existing BOM lines of each imported finished good first.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    configure_logging()
    args = parse_cli_args(argv)
    counts = import_records(load_json_records(args.file), reset=args.reset)
    print(
        f"Raw materials: {counts['raw_materials']}, finished goods: {counts['finished_goods']}, "
        f"BOM lines: {counts['bom_lines']}"
    )


if __name__ == "__main__":
    main()
