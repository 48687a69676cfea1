"""
Hiérarchie des erreurs de l'agent de télémétrie

Les erreurs sont classées selon la décision qu'elles imposent à l'appelant :
- TransientError : erreur réseau ou timeout, une nouvelle tentative est possible
- SetupError : erreur fatale au démarrage (bootstrap, organisation introuvable)
- PointError : erreur limitée à un élément (un point, un échantillon), on l'ignore
"""

from typing import Optional


class TelemetryError(Exception):
    """Erreur de base de l'agent de télémétrie"""


class TransientError(TelemetryError):
    """Erreur réseau ou timeout, la requête peut être retentée"""


class StoreHTTPError(TelemetryError):
    """
    Réponse HTTP en erreur renvoyée par la base de séries temporelles

    Attributes:
        status_code: Code HTTP de la réponse
        message: Message d'erreur renvoyé par le serveur
    """

    def __init__(self, status_code: int, message: str, path: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.path = path
        super().__init__(f"HTTP {status_code} sur {path or '?'}: {message}")

    @property
    def is_transient(self) -> bool:
        """Les erreurs 5xx et 429 peuvent disparaître après une nouvelle tentative"""
        return self.status_code >= 500 or self.status_code == 429


class SetupError(TelemetryError):
    """Erreur fatale pendant l'initialisation, le démarrage doit être abandonné"""


class NotFoundError(SetupError):
    """Ressource introuvable (ex: organisation inexistante)"""


class PointError(TelemetryError):
    """Erreur limitée à un seul point ou une seule entité"""


class ShapeError(PointError):
    """Échantillon brut impossible à transformer en champs/tags"""
