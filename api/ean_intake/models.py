from typing import Optional, Dict, Any, List, Literal
from pydantic import BaseModel, Field

DEFAULT_SEPARATOR = " | "

# Name template: parts are validated by name_generator.validate_template,
# so `type` is a plain string here and bad values are reported, not refused.
class TemplatePart(BaseModel):
    type: str
    value: str = ""

class NameTemplate(BaseModel):
    parts: List[TemplatePart] = Field(default_factory=list)
    separator: str = DEFAULT_SEPARATOR

# -------- Sessions
class SelectColumnIn(BaseModel):
    column: str

class ResolveConflictIn(BaseModel):
    resolution: Literal["keep_existing", "use_new", "skip"]

# -------- Activation
class BrandSelectionIn(BaseModel):
    brand_column: Optional[str] = None
    manual_brand: Optional[str] = None
    brand_id: Optional[int] = None

class ColumnMappingIn(BaseModel):
    color_column: str
    size_column: str

class TemplateConfigIn(BaseModel):
    template: Optional[NameTemplate] = None
    template_string: Optional[str] = None

class ActivateIn(BaseModel):
    brand_id: Optional[int] = None
    manual_brand: Optional[str] = None
    brand_column: Optional[str] = None
    color_column: Optional[str] = None
    size_column: Optional[str] = None
    template: Optional[NameTemplate] = None
    ean_column: Optional[str] = None
    duplicate_strategy: Literal["replace", "review"] = "replace"

class ActivationResultOut(BaseModel):
    success: bool = True
    session_id: int
    inserted: int
    duplicates: int
    conflicts: int = 0
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    total_errors: int = 0

# -------- Queue
class DrainOut(BaseModel):
    success: bool = True
    processed: int = 0
    session_id: Optional[int] = None
    status: Optional[str] = None
    message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
