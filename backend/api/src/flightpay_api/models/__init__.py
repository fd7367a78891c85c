"""API-specific request/response models.

Domain models (Booking, PaymentRecord, ReconciliationResult, ...) are in
flightpay.models and are reused here where they already fit the wire shape.

Modules:
- common: Health and shared response wrappers
- bookings: Booking request/response models
- payments: Payment handle and refund request models
"""

__all__: list[str] = []
