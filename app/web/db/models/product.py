"""
Catalog product (the subset of fields the compliance core reads and patches)
and the lab certificates ingested for it.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Any
from uuid import uuid4

from app.web.db import db
from app.web.db.models.base import BaseModel


class VisibilityState(str, Enum):
    """
    Main-site visibility.

    visible -> hidden_nicotine | hidden_violation -> visible (manual reset only)
    """
    VISIBLE = "visible"
    HIDDEN_NICOTINE = "hidden_nicotine"
    HIDDEN_VIOLATION = "hidden_violation"


class Product(BaseModel):
    """
    A catalog product.

    Owned by the catalog store; the compliance core only patches the
    classification, visibility and lab-test fields.
    """
    __tablename__ = "products"

    id = db.Column(db.String(64), primary_key=True, default=lambda: str(uuid4()))
    name = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Classification flags
    nicotine_product = db.Column(db.Boolean, nullable=False, default=False)
    tobacco_product = db.Column(db.Boolean, nullable=False, default=False)
    requires_lab_test = db.Column(db.Boolean, nullable=False, default=False)
    classified_categories = db.Column(db.JSON, nullable=True)  # most recent result
    classified_at = db.Column(db.DateTime, nullable=True)
    classification_source = db.Column(db.String(16), nullable=True)  # keyword, ai, manual

    # Visibility
    visible_on_main_site = db.Column(db.Boolean, nullable=False, default=True)
    visibility_state = db.Column(db.String(32), nullable=False,
                                 default=VisibilityState.VISIBLE.value)
    hidden_reason = db.Column(db.String(500), nullable=True)

    # Lab testing / batch tracking
    batch_number = db.Column(db.String(100), nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)
    lab_test_url = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                           onupdate=datetime.utcnow)

    compliance_links = db.relationship("ProductCompliance", backref="product", lazy="dynamic",
                                       cascade="all, delete-orphan")
    lab_certificates = db.relationship("LabCertificate", backref="product", lazy="dynamic",
                                       cascade="all, delete-orphan")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "nicotine_product": self.nicotine_product,
            "tobacco_product": self.tobacco_product,
            "requires_lab_test": self.requires_lab_test,
            "classified_categories": self.classified_categories,
            "classified_at": self.classified_at.isoformat() if self.classified_at else None,
            "classification_source": self.classification_source,
            "visible_on_main_site": self.visible_on_main_site,
            "visibility_state": self.visibility_state,
            "hidden_reason": self.hidden_reason,
            "batch_number": self.batch_number,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "lab_test_url": self.lab_test_url,
        }

    def __repr__(self):
        return f"<Product {self.id} {self.name!r}>"


class LabCertificate(BaseModel):
    """
    A parsed Certificate of Analysis.

    Created once per ingested COA and never mutated; re-ingesting a COA
    creates a new row.

    potency: {"thca": 24.1, "delta9": 0.21, ...} (percent)
    contaminant_results: {"pesticides": "pass", "heavy_metals": "not_tested", ...}
    """
    __tablename__ = "lab_certificates"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid4()))
    product_id = db.Column(db.String(64), db.ForeignKey("products.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    url = db.Column(db.String(1000), nullable=False)

    batch_number = db.Column(db.String(100), nullable=True)
    potency = db.Column(db.JSON, nullable=True)
    tested_at = db.Column(db.Date, nullable=True)
    lab_name = db.Column(db.String(300), nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)
    contaminant_results = db.Column(db.JSON, nullable=True)

    is_valid = db.Column(db.Boolean, nullable=False, default=False)
    validation_errors = db.Column(db.JSON, nullable=False, default=list)
    parsed_by_ai = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "url": self.url,
            "batch_number": self.batch_number,
            "potency": self.potency,
            "tested_at": self.tested_at.isoformat() if self.tested_at else None,
            "lab_name": self.lab_name,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "contaminant_results": self.contaminant_results,
            "is_valid": self.is_valid,
            "validation_errors": list(self.validation_errors or []),
            "parsed_by_ai": self.parsed_by_ai,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
