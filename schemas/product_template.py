from pydantic import BaseModel
from typing import Any, Dict, Optional


class ElementSpec(BaseModel):
    """One section of a product-page template.

    Templates saved by older editors store a bare type name; newer ones store
    ``{type, id, settings}``. Both are normalized into this shape once, on load.
    """

    type: str
    id: Optional[str] = None
    settings: Dict[str, Any] = {}
