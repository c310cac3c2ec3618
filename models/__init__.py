# Import models so that SQLAlchemy metadata includes them on app startup
from .store import Store  # noqa: F401
from .page import Page  # noqa: F401
from .product_template import ProductPageTemplate, TemplateAssignment  # noqa: F401
