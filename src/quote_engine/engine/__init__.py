"""Engine subpackage - core pricing logic and quote assembly."""
from .pricing_engine import PricingEngine, calculate_price
from .models import Selection, LineItem, PriceBreakdown

__all__ = ['PricingEngine', 'calculate_price', 'Selection', 'LineItem', 'PriceBreakdown']
