# module storefront.utils.errors
"""
Taxonomie d'erreurs du rapprochement des paiements.

Chaque erreur porte un code HTTP: le handler enregistré par
storefront.app_setup.exceptions la rend en JSON {"error": message}.
- InvalidProduct: produit absent ou prix invalide.
- InvalidSignature: webhook non authentifié (401, le fournisseur réessaiera).
- ProviderError: réponse non-2xx d'une API de paiement (statut et message du fournisseur si lisibles).
- MalformedPayload: corps illisible (400).
- DuplicateEvent: pas une vraie erreur, l'évènement a déjà été traité.
"""
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    status_code = 500
    code = "internal_error"
    default_message = "Erreur interne"

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class OrderError(StorefrontError):
    status_code = 400
    code = "order_error"
    default_message = "Commande invalide"


class InvalidProduct(OrderError):
    code = "invalid_product"
    default_message = "Invalid product price"


class AuthError(StorefrontError):
    status_code = 401
    code = "auth_error"
    default_message = "Non authentifié"


class InvalidSignature(AuthError):
    code = "invalid_signature"
    default_message = "Invalid webhook signature"


class MalformedPayload(StorefrontError):
    status_code = 400
    code = "malformed_payload"
    default_message = "Invalid JSON payload"


class DuplicateEvent(StorefrontError):
    status_code = 200
    code = "duplicate"
    default_message = "Already processed"

    def __init__(self, message: str = "", order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class ProviderError(StorefrontError):
    status_code = 502
    code = "provider_error"
    default_message = "Payment provider error"

    def __init__(self, message: str = "", status_code: Optional[int] = None, provider: str = ""):
        super().__init__(message, status_code=status_code)
        self.provider = provider

    @classmethod
    def from_response(cls, provider: str, response, fallback: str) -> "ProviderError":
        """
        Construit l'erreur depuis une réponse httpx non-2xx.
        - Message: message / error_description / details[0].description / error(.message), sinon fallback.
        - Statut: celui du fournisseur (>= 400), sinon 502.
        """
        message = ""
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            details = data.get("details") or []
            first = details[0] if isinstance(details, list) and details else {}
            error = data.get("error")
            message = (
                data.get("message")
                or data.get("error_description")
                or (first.get("description") if isinstance(first, dict) else "")
                or (error.get("message") if isinstance(error, dict) else error)
                or ""
            )
        if not message:
            message = (getattr(response, "text", "") or "").strip()[:300] or fallback
        status = getattr(response, "status_code", None)
        if not isinstance(status, int) or status < 400:
            status = None
        return cls(str(message), status_code=status, provider=provider)
