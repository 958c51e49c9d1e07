from .checkout import CheckoutService, CompletedSale, PaymentRequest, SaleLineRequest

__all__ = ["CheckoutService", "CompletedSale", "PaymentRequest", "SaleLineRequest"]
