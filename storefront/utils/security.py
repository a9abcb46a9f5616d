import secrets
from fastapi import Request, HTTPException, Depends
from typing import Dict, Any, Optional
import storefront.config as config


def get_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def get_admin_identity(request: Request) -> Dict[str, Any]:
    """
    Authentifie un appel d'administration par jeton Bearer.
    - ADMIN_API_TOKEN vide: routes admin fermées (403).
    - Comparaison en temps constant (secrets.compare_digest).
    """
    expected = config.ADMIN_API_TOKEN
    if not expected:
        raise HTTPException(status_code=403, detail="Accès admin désactivé")
    token = get_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")
    if not secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Accès interdit")
    return {"role": "admin"}


def require_admin(admin: Dict[str, Any] = Depends(get_admin_identity)) -> Dict[str, Any]:
    return admin
