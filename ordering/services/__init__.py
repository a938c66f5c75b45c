from ordering.services.checkout import CheckoutAssembler
from ordering.services.lifecycle import OrderLifecycleEngine

__all__ = ["CheckoutAssembler", "OrderLifecycleEngine"]
