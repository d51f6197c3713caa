"""Order lifecycle coordinator for a multi-sided food-delivery marketplace."""
