"""
Services package for the order coordinator.

Business logic organized by concern:
- orders: state machine, rider arbiter, pricing and the coordinator facade
- payments: gateway callback reconciliation, checkout and refunds
- promotions: promo code validation and redemption accounting
- notifications: lifecycle events and the notification fanout
- geo: nearby rider lookup
"""
