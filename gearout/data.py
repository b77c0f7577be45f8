from __future__ import annotations
import io
import logging
from typing import List
from uuid import uuid4

import pandas as pd
import streamlit as st

from .models import EquipmentRecord, EquipmentStatus, QrType

logger = logging.getLogger(__name__)

ALIASES = {
    "name": ["designation", "item", "model", "title", "short_title"],
    "serial_number": ["serial", "sn", "serial_no", "serialnumber", "numero_de_serie"],
    "article_number": ["article", "art_no", "article_no", "articlenumber", "reference", "ref"],
    "total_quantity": ["qty", "quantity", "stock", "total", "totalquantity"],
    "qr_type": ["qr", "qrtype"],
}

# ---- Header normalization helper ------------------------------------------------
def _normalize_cols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = (
        df.columns.astype(str)
        .str.strip().str.lower()
        .str.replace(r"[^\w]+", "_", regex=True)  # spaces/punct -> underscore
        .str.strip("_")
    )
    return df

# ---- Canonicalize required columns and dtypes -----------------------------------
def _postprocess(out: pd.DataFrame) -> pd.DataFrame:
    for col, aliases in ALIASES.items():
        if col in out.columns:
            continue
        for c in aliases:
            if c in out.columns:
                out = out.rename(columns={c: col})
                break
    for col in ["name", "serial_number", "article_number", "category", "location", "description"]:
        if col not in out.columns:
            out[col] = ""
        out[col] = out[col].fillna("").astype(str).str.strip()
    if "total_quantity" not in out.columns:
        out["total_quantity"] = 1
    out["total_quantity"] = pd.to_numeric(out["total_quantity"], errors="coerce").fillna(1).astype(int).clip(lower=1)
    if "qr_type" not in out.columns:
        out["qr_type"] = ""
    # one QR per unit unless the sheet says otherwise; pools of > 1 default to batch
    out["qr_type"] = out["qr_type"].fillna("").astype(str).str.strip().str.lower()
    out.loc[~out["qr_type"].isin([q.value for q in QrType]), "qr_type"] = ""
    out.loc[(out["qr_type"] == "") & (out["total_quantity"] > 1), "qr_type"] = QrType.BATCH.value
    out.loc[out["qr_type"] == "", "qr_type"] = QrType.INDIVIDUAL.value
    out["category"] = out["category"].replace("", "Uncategorized")
    # rows without a name and without any code are noise
    out = out[(out["name"] != "") | (out["serial_number"] != "")]
    return out.reset_index(drop=True)

def _concat_sheets(sheets: dict) -> pd.DataFrame:
    frames = []
    for sheet_name, df in sheets.items():
        if df is None or df.empty:
            continue
        df = _normalize_cols(df)
        if "category" not in df.columns:
            df["category"] = sheet_name
        frames.append(df)
    if not frames:
        return pd.DataFrame()
    return _postprocess(pd.concat(frames, ignore_index=True))

# ---- Load ALL sheets from a file path, `category` defaults to the sheet name ----
@st.cache_data(show_spinner=False)
def load_equipment_sheets_from_path(path: str) -> pd.DataFrame:
    """
    Reads ALL Excel sheets (or a single CSV) and concatenates them into one DataFrame.
    Sheet names become the 'category' when the sheet has no such column.
    """
    if path.lower().endswith(".csv"):
        return _concat_sheets({"Uncategorized": pd.read_csv(path)})
    return _concat_sheets(pd.read_excel(path, sheet_name=None))

# ---- Same but for uploaded bytes (st.file_uploader) -----------------------------
@st.cache_data(show_spinner=False)
def load_equipment_sheets_from_bytes(buf: bytes, filename: str = "upload.xlsx") -> pd.DataFrame:
    if filename.lower().endswith(".csv"):
        return _concat_sheets({"Uncategorized": pd.read_csv(io.BytesIO(buf))})
    return _concat_sheets(pd.read_excel(io.BytesIO(buf), sheet_name=None))

# ---- DataFrame -> catalog records -------------------------------------------------
def _cell_id(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()

def records_from_frame(df: pd.DataFrame) -> List[EquipmentRecord]:
    if df is None or df.empty:
        return []
    df = _postprocess(_normalize_cols(df))
    records = []
    for row in df.to_dict(orient="records"):
        rid = _cell_id(row.get("id")) or uuid4().hex
        records.append(EquipmentRecord(
            id=rid,
            name=row["name"] or row["serial_number"],
            serial_number=row["serial_number"],
            article_number=row["article_number"] or None,
            total_quantity=int(row["total_quantity"]),
            status=EquipmentStatus.AVAILABLE,
            qr_type=row["qr_type"],
            category=row["category"],
            location=row["location"],
            description=row["description"],
        ))
    logger.info("Parsed %d equipment record(s) from sheet", len(records))
    return records

def catalog_frame(records: List[EquipmentRecord]) -> pd.DataFrame:
    """Tabular view of the catalog for display."""
    return pd.DataFrame([{
        "id": r.id,
        "name": r.name,
        "serial_number": r.serial_number,
        "article_number": r.article_number or "",
        "category": r.category,
        "status": r.status.value,
        "available": r.available_quantity,
        "total": r.total_quantity,
        "qr_type": r.qr_type.value,
    } for r in records])
