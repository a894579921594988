"""
Pydantic request/response models for the API.

Field names on the wire are camelCase, matching the browser client.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional, Union


# ============== Catalog Upload ==============

CatalogPayload = Union[List[Dict[str, Any]], Dict[str, Any]]


class UploadRequest(BaseModel):
    """Host publishes a catalog as spreadsheet rows (or a serialized catalog)."""
    model_config = ConfigDict(populate_by_name=True)

    catalog: Optional[CatalogPayload] = None
    excel_data: Optional[CatalogPayload] = Field(None, alias="excelData")
    code_column: Optional[str] = Field(None, alias="codeColumn")
    quantity_column: Optional[str] = Field(None, alias="quantityColumn")

    def payload(self) -> Optional[CatalogPayload]:
        """`excelData` is the older client's name for `catalog`."""
        return self.catalog if self.catalog is not None else self.excel_data


class CatalogUpdateRequest(UploadRequest):
    """Replace the catalog of an existing session (resets its scans)."""
    code: str


# ============== Scans ==============

class ScanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    scanned_code: Any = Field(..., alias="scannedCode")
