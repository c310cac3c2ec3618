import json

# Built-in starter content per page type and language. Text carries {placeholder}
# tokens filled by Store.replace_content_placeholders.
DEFAULT_PAGE_CONTENT = {
    "en": {
        "home": {
            "title": "Welcome to {store_name}",
            "subtitle": "Quality products, delivered to your door",
            "content_blocks": json.dumps([
                {
                    "type": "hero",
                    "title": "Welcome to {store_name}",
                    "subtitle": "Discover our latest products",
                    "cta": "Shop Now",
                },
                {
                    "type": "features",
                    "items": [
                        {"title": "Fast Delivery", "description": "Orders ship quickly within {store_country}."},
                        {"title": "Secure Payments", "description": "Pay safely in {store_currency}."},
                        {"title": "Friendly Support", "description": "Questions? Write to {support_email}."},
                    ],
                },
            ]),
            "meta_title": "{store_name}",
            "meta_description": "Shop the latest products at {store_name}.",
        },
        "products": {
            "title": "Our Products",
            "subtitle": "Browse the full {store_name} collection",
            "content_blocks": "[]",
            "meta_title": "Products - {store_name}",
            "meta_description": "All products available at {store_name}.",
        },
        "about": {
            "title": "About {store_name}",
            "subtitle": "Who we are",
            "content_blocks": json.dumps([
                {
                    "type": "text",
                    "content": "<p>{store_name} is an online store serving customers in {store_country}. "
                               "We care about quality products and exceptional service.</p>",
                },
            ]),
            "meta_title": "About - {store_name}",
            "meta_description": "Learn more about {store_name}.",
        },
        "contact": {
            "title": "Contact Us",
            "subtitle": "We are happy to help",
            "content_blocks": json.dumps([
                {
                    "type": "text",
                    "content": "<p>Email: <a href=\"mailto:{support_email}\">{support_email}</a></p>"
                               "<p>Phone: {support_phone}</p>"
                               "<p>Address: {business_address}</p>",
                },
            ]),
            "meta_title": "Contact - {store_name}",
            "meta_description": "Get in touch with {store_name}.",
        },
    },
}

FALLBACK_LANGUAGE = "en"


def default_content_for(page_type: str, language: str) -> dict | None:
    """Starter content in the store language, falling back to English."""
    for lang in (language, FALLBACK_LANGUAGE):
        content = DEFAULT_PAGE_CONTENT.get(lang, {}).get(page_type)
        if content:
            return dict(content)
    return None
