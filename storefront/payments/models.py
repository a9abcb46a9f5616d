from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class PaymentEvent(BaseModel):
    """
    Paiement confirmé, normalisé depuis un webhook ou une capture.
    - correlation_id: identifiant du checkout côté fournisseur (session Whop, commande PayPal).
    - plan_id: plan Whop payé (retrouve la session provisoire plan_<id> sans checkout_session_id).
    - metadata: métadonnées renvoyées par le fournisseur (souvent partielles).
    - reported_amount: montant réellement encaissé selon le fournisseur.
    """
    provider: str
    correlation_id: Optional[str] = None
    product_id: Optional[str] = None
    email: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    reported_amount: Optional[Decimal] = None
    payer_id: Optional[str] = None
    plan_id: Optional[str] = None
    event_type: str = ""
