from .service import send_order_confirmation, send_renewal_email

__all__ = ["send_order_confirmation", "send_renewal_email"]
