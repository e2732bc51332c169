"""
Taxonomie d'erreurs du service de facturation.

Chaque erreur porte le code HTTP à renvoyer; le handler enregistré dans
billing.app_setup.exceptions les sérialise en {"error": message}.
"""


class BillingError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(BillingError):
    """Entrée manquante ou mal formée."""
    status_code = 400


class Unauthorized(BillingError):
    status_code = 401


class Forbidden(BillingError):
    status_code = 403


class NotFound(BillingError):
    """Produit, commande ou abonnement absent."""
    status_code = 404


class ProviderRejected(BillingError):
    """Paiement refusé ou erreur API du prestataire (message du prestataire conservé)."""
    status_code = 402

    def __init__(self, message: str, provider: str = "", code: str | None = None):
        super().__init__(message)
        self.provider = provider
        self.code = code


class RefundFailed(BillingError):
    """Remboursement impossible (déjà remboursé, montant invalide, identifiant incompatible)."""
    status_code = 409
