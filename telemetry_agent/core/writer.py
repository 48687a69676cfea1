"""
Tampon d'écriture des points vers InfluxDB

Ce module gère :
- La construction des points (mesure, champs, tags, horodatage)
- La mise en tampon et l'envoi par lots vers un org/bucket
- La vidange du tampon à l'arrêt de l'agent
"""

import threading
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import WriteOptions

from .errors import PointError


def make_point(measurement: str, fields: Mapping[str, Any], tags: Mapping[str, str],
               timestamp: datetime, default_tags: Optional[Mapping[str, str]] = None) -> Point:
    """
    Construit un point InfluxDB

    Les tags par défaut sont fusionnés avant les tags du point,
    qui l'emportent en cas de conflit.

    Args:
        measurement: Nom de la mesure
        fields: Champs numériques (écrits en float)
        tags: Tags texte
        timestamp: Horodatage du point
        default_tags: Tags communs à tous les points

    Returns:
        Point: Point prêt à être écrit

    Raises:
        PointError: Si un champ n'est pas numérique
    """
    point = Point(measurement)

    for key, value in {**(default_tags or {}), **tags}.items():
        point.tag(key, str(value))

    for key, value in fields.items():
        try:
            point.field(key, float(value))
        except (TypeError, ValueError) as e:
            raise PointError(f"Champ {measurement}.{key} non numérique: {value!r}") from e

    point.time(timestamp, WritePrecision.NS)
    return point


class WriteBuffer:
    """
    File de points en attente d'envoi vers un org/bucket

    Les points sont envoyés par lots en arrière-plan par l'API d'écriture
    d'influxdb_client. L'accès à l'API d'écriture est protégé par un verrou,
    le tampon étant partagé entre les cycles de collecte et l'arrêt.
    """

    def __init__(self, config, logger):
        """
        Initialise le tampon (sans API d'écriture, voir init())

        Args:
            config: Instance de AgentConfig
            logger: Instance de AgentLogger
        """
        self.config = config
        self.logger = logger.get_logger()

        write_config = config.get_write_config()
        self.batch_size = write_config['batch_size']
        self.flush_interval = write_config['flush_interval']

        self.org = None
        self.bucket = None
        self.write_api = None
        self._lock = threading.Lock()

        # Statistiques d'écriture
        self.points_enqueued = 0
        self.points_rejected = 0
        self.batches_failed = 0

    @property
    def is_ready(self) -> bool:
        return self.write_api is not None

    def init(self, client: InfluxDBClient, org: str, bucket: str) -> bool:
        """
        Crée l'API d'écriture pour un org/bucket

        Les points sont écrits tels quels : les tags par défaut sont déjà
        fusionnés par make_point, les tags du point l'emportant. Une API
        d'écriture existante est d'abord vidée puis fermée.

        Args:
            client: Client InfluxDB authentifié
            org: Nom de l'organisation
            bucket: Nom du bucket

        Returns:
            bool: True si l'API d'écriture est prête
        """
        try:
            with self._lock:
                if self.write_api is not None:
                    try:
                        self._release_write_api()
                    except Exception:
                        self.logger.exception("Erreur lors de la fermeture de l'API d'écriture précédente")
                self.write_api = client.write_api(
                    write_options=WriteOptions(
                        batch_size=self.batch_size,
                        flush_interval=self.flush_interval
                    ),
                    error_callback=self._on_error,
                    retry_callback=self._on_retry
                )
                self.org = org
                self.bucket = bucket
        except Exception:
            self.logger.exception("Erreur lors de la création de l'API d'écriture")
            return False

        self.logger.info(f"API d'écriture prête (org: {org}, bucket: {bucket})")
        return True

    def _release_write_api(self):
        """Vide et ferme l'API d'écriture courante, verrou déjà pris"""
        try:
            self.write_api.close()
        finally:
            self.write_api = None

    def _on_error(self, conf, data, exception):
        self.batches_failed += 1
        self.logger.error(f"Échec d'écriture du lot vers {conf}: {exception}")

    def _on_retry(self, conf, data, exception):
        self.logger.warning(f"Nouvelle tentative d'écriture vers {conf}: {exception}")

    def _validate(self, point) -> Point:
        if not isinstance(point, Point):
            raise PointError(f"Objet inattendu à la place d'un point: {type(point).__name__}")
        if not point.to_line_protocol():
            raise PointError("Point sans champ, ignoré")
        return point

    def enqueue(self, point: Point) -> bool:
        """
        Ajoute un point au tampon

        Un point invalide est journalisé et ignoré, sans lever d'exception.

        Returns:
            bool: True si le point a été accepté
        """
        return self.enqueue_batch([point]) == 1

    def enqueue_batch(self, points: Iterable[Point]) -> int:
        """
        Ajoute un lot de points au tampon

        Les points invalides sont journalisés et ignorés, les autres
        sont mis en tampon.

        Returns:
            int: Nombre de points acceptés
        """
        valid = []
        for point in points:
            try:
                valid.append(self._validate(point))
            except Exception as e:
                self.points_rejected += 1
                self.logger.warning(f"Point ignoré: {e}")

        if not valid:
            return 0

        with self._lock:
            if self.write_api is None:
                self.points_rejected += len(valid)
                self.logger.error("API d'écriture non initialisée, points ignorés")
                return 0

            try:
                self.write_api.write(bucket=self.bucket, org=self.org, record=valid)
            except Exception:
                self.points_rejected += len(valid)
                self.logger.exception("Erreur lors de la mise en tampon des points")
                return 0

            self.points_enqueued += len(valid)

        self.logger.debug(f"{len(valid)} point(s) mis en tampon")
        return len(valid)

    def close(self) -> bool:
        """
        Vide le tampon, attend la fin des envois et libère l'API d'écriture

        Returns:
            bool: True si la vidange s'est terminée sans erreur
        """
        with self._lock:
            if self.write_api is None:
                self.logger.warning("API d'écriture déjà fermée")
                return True

            try:
                self._release_write_api()
            except Exception:
                self.logger.exception("Erreur lors de la vidange du tampon d'écriture")
                return False

        self.logger.info(f"Tampon d'écriture vidé ({self.points_enqueued} point(s) au total)")
        return self.batches_failed == 0

    def get_stats(self) -> Dict[str, Any]:
        """
        Retourne les statistiques d'écriture

        Returns:
            dict: Compteurs de points
        """
        return {
            'ready': self.is_ready,
            'org': self.org,
            'bucket': self.bucket,
            'points_enqueued': self.points_enqueued,
            'points_rejected': self.points_rejected,
            'batches_failed': self.batches_failed
        }
