# module storefront.payments.signature
"""
Authentification des webhooks fournisseurs: HMAC-SHA256 du corps brut avec un secret partagé.

- Secret configuré + signature absente/incorrecte: InvalidSignature (401, le fournisseur réessaiera).
- Aucun secret configuré: l'évènement est traité sans vérification (mode non sécurisé, journalisé).
"""
from typing import Iterable, List, Mapping, Optional
import hashlib
import hmac
import logging

from storefront.utils.errors import InvalidSignature

logger = logging.getLogger(__name__)


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def signature_from_headers(headers: Mapping[str, str], names: Iterable[str]) -> Optional[str]:
    for name in names:
        value = headers.get(name)
        if value:
            return value.strip()
    return None


def _candidates(header_value: str) -> List[str]:
    """
    Formats acceptés: "<hex>", "sha256=<hex>", "t=...,v1=<hex>" (plusieurs v1 possibles).
    """
    out = []
    for part in header_value.replace(" ", "").split(","):
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep:
            out.append(part)
        elif key in ("sha256", "v1"):
            out.append(value)
    return [c.lower() for c in out if c]


def verify_signature(raw_body: bytes, header_value: Optional[str], secret: Optional[str], provider: str = "") -> bool:
    """
    Vérifie la signature d'un webhook.
    Retour: True si vérifiée, False si aucun secret n'est configuré (traitement non vérifié).
    """
    if not secret:
        logger.warning("payments.signature %s webhook processed WITHOUT signature verification (no secret configured)", provider)
        return False
    if not header_value:
        raise InvalidSignature("Missing webhook signature")
    expected = compute_signature(secret, raw_body)
    for candidate in _candidates(header_value):
        if hmac.compare_digest(candidate, expected):
            return True
    logger.warning("payments.signature %s webhook signature mismatch", provider)
    raise InvalidSignature("Invalid webhook signature")
