"""Search keywords and gradient fallbacks for event header images."""
from processor.models import CatalogEvent

PRIORITY_KEYWORDS = [
    'workshop', 'art', 'music', 'kids', 'ceramics', 'drawing',
    'theater', 'book', 'community', 'festival', 'market',
    'dance', 'yoga', 'fitness', 'food', 'cooking', 'garden',
]

# First keyword found in the event text wins; order matters
CATEGORY_GRADIENTS = {
    # Kids & family
    'kids': 'linear-gradient(135deg, #667eea 0%, #764ba2 100%)',
    'children': 'linear-gradient(135deg, #667eea 0%, #764ba2 100%)',
    'family': 'linear-gradient(135deg, #667eea 0%, #764ba2 100%)',
    'toddler': 'linear-gradient(135deg, #667eea 0%, #764ba2 100%)',

    # Art
    'art': 'linear-gradient(135deg, #f093fb 0%, #f5576c 100%)',
    'ceramics': 'linear-gradient(135deg, #fad0c4 0%, #ffd1ff 100%)',
    'pottery': 'linear-gradient(135deg, #fad0c4 0%, #ffd1ff 100%)',
    'drawing': 'linear-gradient(135deg, #a8edea 0%, #fed6e3 100%)',
    'painting': 'linear-gradient(135deg, #ff9a9e 0%, #fecfef 100%)',

    # Crafts
    'textiles': 'linear-gradient(135deg, #ffecd2 0%, #fcb69f 100%)',
    'sewing': 'linear-gradient(135deg, #ffecd2 0%, #fcb69f 100%)',

    # Music & performance
    'music': 'linear-gradient(135deg, #4facfe 0%, #00f2fe 100%)',
    'concert': 'linear-gradient(135deg, #43e97b 0%, #38f9d7 100%)',
    'band': 'linear-gradient(135deg, #4facfe 0%, #00f2fe 100%)',
    'orchestra': 'linear-gradient(135deg, #fa709a 0%, #fee140 100%)',
    'theater': 'linear-gradient(135deg, #d299c2 0%, #fef9d7 100%)',
    'theatre': 'linear-gradient(135deg, #d299c2 0%, #fef9d7 100%)',
    'performance': 'linear-gradient(135deg, #fbc2eb 0%, #a6c1ee 100%)',

    # Learning
    'workshop': 'linear-gradient(135deg, #fddb92 0%, #d1fdff 100%)',
    'class': 'linear-gradient(135deg, #fddb92 0%, #d1fdff 100%)',
    'seminar': 'linear-gradient(135deg, #fddb92 0%, #d1fdff 100%)',
    'book': 'linear-gradient(135deg, #c2e9fb 0%, #a1c4fd 100%)',
    'reading': 'linear-gradient(135deg, #c2e9fb 0%, #a1c4fd 100%)',
    'story': 'linear-gradient(135deg, #c2e9fb 0%, #a1c4fd 100%)',
    'library': 'linear-gradient(135deg, #e0c3fc 0%, #8ec5fc 100%)',

    # Community
    'market': 'linear-gradient(135deg, #f6d365 0%, #fda085 100%)',
    'support': 'linear-gradient(135deg, #ffecd2 0%, #fcb69f 100%)',
    'community': 'linear-gradient(135deg, #a1c4fd 0%, #c2e9fb 100%)',

    # Seasonal
    'halloween': 'linear-gradient(135deg, #fd746c 0%, #ff9068 100%)',
    'holiday': 'linear-gradient(135deg, #fbc2eb 0%, #a6c1ee 100%)',
}

DEFAULT_GRADIENT = 'linear-gradient(135deg, #667eea 0%, #764ba2 100%)'


def _event_text(event: CatalogEvent) -> str:
    return f"{event.title} {event.description or ''} {event.category or ''}".lower()


def extract_search_keywords(event: CatalogEvent) -> str:
    """
    Pick a photo-search query for an event.

    The first priority keyword found in the event text wins, then the
    category (unless it is the generic "community"), then the first word
    of the title.
    """
    combined = _event_text(event)
    for keyword in PRIORITY_KEYWORDS:
        if keyword in combined:
            return keyword

    category = (event.category or '').strip().lower()
    if category and category != 'community':
        return category

    words = event.title.split()
    return words[0].lower() if words else 'community'


def event_gradient(event: CatalogEvent) -> str:
    """Deterministic CSS gradient for an event without a real image."""
    text = _event_text(event)
    for keyword, gradient in CATEGORY_GRADIENTS.items():
        if keyword in text:
            return gradient
    return DEFAULT_GRADIENT


def is_gradient_string(value) -> bool:
    return isinstance(value, str) and value.strip().startswith('linear-gradient')
