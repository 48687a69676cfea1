"""
Module de planification pour l'agent de télémétrie

Ce module gère :
- La planification des collectes périodiques
- L'exécution de chaque cycle (collecte, mise en forme, écriture)
- Le garde "un seul cycle à la fois"
- Le démarrage et l'arrêt du scheduler
"""

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import schedule
from influxdb_client import Point

from .errors import PointError, ShapeError
from .shaper import MetricShaper, ShapedSample, entity_pairs, flatten
from .writer import make_point


def build_points(shaped: ShapedSample, timestamp: datetime, default_tags: Optional[Dict[str, str]] = None,
                 logger=None) -> List[Point]:
    """
    Construit un point par entité, tous avec le même horodatage

    Une entité invalide est journalisée et ignorée.

    Returns:
        list: Points système, GPU puis disques
    """
    points = []
    for measurement, entity in entity_pairs(shaped):
        try:
            points.append(make_point(measurement, entity.fields, entity.tags, timestamp, default_tags))
        except PointError as e:
            if logger:
                logger.warning(f"Point {measurement} ignoré: {e}")
    return points


class TelemetryScheduler:
    """
    Planificateur des cycles de collecte

    Chaque cycle est lancé dans son propre thread pour ne pas retarder
    la planification. Un cycle qui se déclenche alors que le précédent
    n'est pas terminé est ignoré.
    """

    def __init__(self, config, logger, inventory, write_buffer, shaper: Optional[MetricShaper] = None):
        """
        Initialise le scheduler

        Args:
            config: Instance de AgentConfig
            logger: Instance de AgentLogger
            inventory: Collecteur d'inventaire (méthode info(modules))
            write_buffer: Instance de WriteBuffer
            shaper: Instance de MetricShaper (créée depuis la configuration par défaut)
        """
        self.config = config
        self.logger = logger.get_logger()
        self.inventory = inventory
        self.write_buffer = write_buffer

        agent_config = config.get_agent_config()
        self.interval_ms = agent_config['interval_ms']
        self.modules = agent_config['monitor']
        self.shaper = shaper or MetricShaper(agent_config['gpu_vendor'], logger=self.logger)
        self.default_tags = config.get_default_tags()

        # État du scheduler
        self.is_running = False
        self.scheduler = schedule.Scheduler()
        self.scheduler_thread = None
        self.stop_event = threading.Event()

        # Un seul cycle à la fois
        self._tick_lock = threading.Lock()
        self._tick_threads: List[threading.Thread] = []

        # Statistiques
        self.ticks_completed = 0
        self.ticks_skipped = 0
        self.ticks_failed = 0
        self.last_tick = None

        self.logger.info("TelemetryScheduler initialisé")

    def start(self, interval_ms: Optional[int] = None):
        """
        Démarre la collecte périodique en arrière-plan

        Args:
            interval_ms: Intervalle entre deux cycles (valeur de configuration par défaut)
        """
        if self.is_running:
            self.logger.warning("Scheduler déjà en cours d'exécution")
            return

        if interval_ms is not None:
            self.interval_ms = interval_ms

        self.scheduler.clear()
        self.scheduler.every(self.interval_ms / 1000).seconds.do(self._dispatch_tick)

        self.is_running = True
        self.stop_event.clear()

        self.scheduler_thread = threading.Thread(
            target=self._scheduler_loop,
            name="TelemetryScheduler",
            daemon=True
        )
        self.scheduler_thread.start()

        self.logger.info(f"Scheduler démarré (intervalle: {self.interval_ms} ms)")

    def stop(self, timeout: float = 10.0):
        """
        Arrête le scheduler et attend la fin du cycle en cours

        Args:
            timeout: Délai maximal d'attente en secondes
        """
        if not self.is_running:
            return

        self.logger.info("Arrêt du scheduler...")

        self.is_running = False
        self.stop_event.set()
        self.scheduler.clear()

        if self.scheduler_thread and self.scheduler_thread.is_alive():
            self.scheduler_thread.join(timeout=timeout)

        for thread in self._tick_threads:
            if thread.is_alive():
                thread.join(timeout=timeout)
        self._tick_threads = []

        self.logger.info("Scheduler arrêté")

    def _scheduler_loop(self):
        """
        Boucle principale du scheduler

        Exécute les tâches dues puis attend la prochaine échéance
        (ou la demande d'arrêt).
        """
        self.logger.debug("Boucle du scheduler démarrée")

        while not self.stop_event.is_set():
            try:
                self.scheduler.run_pending()
            except Exception:
                self.logger.exception("Erreur dans la boucle du scheduler")

            idle = self.scheduler.idle_seconds
            wait = 0.1 if idle is None else min(max(idle, 0.0), 1.0)
            self.stop_event.wait(timeout=wait)

        self.logger.debug("Boucle du scheduler terminée")

    def _dispatch_tick(self):
        """Lance un cycle dans un thread dédié, sauf si le précédent tourne encore"""
        if self._tick_lock.locked():
            self.ticks_skipped += 1
            self.logger.warning("Cycle précédent toujours en cours, cycle ignoré")
            return

        thread = threading.Thread(target=self.tick, name="TelemetryTick", daemon=True)
        self._tick_threads = [t for t in self._tick_threads if t.is_alive()]
        self._tick_threads.append(thread)
        thread.start()

    def tick(self) -> int:
        """
        Exécute un cycle complet : collecte, mise en forme, écriture

        Returns:
            int: Nombre de points mis en tampon (0 si le cycle est ignoré)
        """
        if not self._tick_lock.acquire(blocking=False):
            self.ticks_skipped += 1
            self.logger.warning("Cycle précédent toujours en cours, cycle ignoré")
            return 0

        try:
            timestamp = datetime.now(timezone.utc)
            raw_sample = flatten(self.inventory.info(self.modules))

            try:
                shaped = self.shaper.shape(raw_sample)
            except ShapeError as e:
                self.ticks_failed += 1
                self.logger.error(f"Échantillon ignoré: {e}")
                return 0

            points = build_points(shaped, timestamp, self.default_tags, self.logger)
            accepted = self.write_buffer.enqueue_batch(points)

            self.ticks_completed += 1
            self.last_tick = timestamp
            self.logger.debug(f"Cycle terminé: {accepted}/{len(points)} point(s)")
            return accepted

        except Exception:
            self.ticks_failed += 1
            self.logger.exception("Erreur lors du cycle de collecte")
            return 0

        finally:
            self._tick_lock.release()

    def get_status(self) -> Dict[str, Any]:
        """
        Retourne le statut actuel du scheduler

        Returns:
            dict: Informations sur l'état du scheduler
        """
        next_run = self.scheduler.next_run if self.scheduler.get_jobs() else None
        return {
            'is_running': self.is_running,
            'interval_ms': self.interval_ms,
            'next_run': next_run.isoformat() if next_run else None,
            'last_tick': self.last_tick.isoformat() if self.last_tick else None,
            'ticks_completed': self.ticks_completed,
            'ticks_skipped': self.ticks_skipped,
            'ticks_failed': self.ticks_failed
        }
