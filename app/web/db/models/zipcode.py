"""
US ZIP code reference table (ZIP -> state, city, county).

Populated by scripts/import_zipcodes.py from the HUD ZIP-County crosswalk.
"""

from typing import Dict, Any

from app.web.db import db
from app.web.db.models.base import BaseModel


class UsZipcode(BaseModel):
    __tablename__ = "us_zipcodes"

    zip = db.Column(db.String(5), primary_key=True)
    state = db.Column(db.String(2), nullable=False, index=True)
    city = db.Column(db.String(100), nullable=True)
    county = db.Column(db.String(100), nullable=True)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "zip": self.zip,
            "state": self.state,
            "city": self.city,
            "county": self.county,
        }

    def __repr__(self):
        return f"<UsZipcode {self.zip} {self.state}>"
