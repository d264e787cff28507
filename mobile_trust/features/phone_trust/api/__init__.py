from .router import get_phone_trust_validator, phone_trust_exception_handler, router

__all__ = ["get_phone_trust_validator", "phone_trust_exception_handler", "router"]
