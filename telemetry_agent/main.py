"""
Point d'entrée principal de l'agent de télémétrie

Ce module orchestre tous les composants de l'agent et peut être exécuté
de différentes manières selon les besoins :
- En mode service (collecte périodique et écriture dans InfluxDB)
- En mode collecte unique (échantillon mis en forme, sans InfluxDB)
- En mode test (vérification de la connexion à InfluxDB)
"""

import sys
import json
import time
import signal
import argparse
import threading
from dataclasses import asdict

from telemetry_agent.collectors.inventory import InventoryCollector
from telemetry_agent.core.config import AgentConfig, create_default_config
from telemetry_agent.core.errors import SetupError, TransientError
from telemetry_agent.core.logger import AgentLogger
from telemetry_agent.core.scheduler import TelemetryScheduler
from telemetry_agent.core.session import SessionManager
from telemetry_agent.core.shaper import MetricShaper, flatten
from telemetry_agent.core.writer import WriteBuffer


class TelemetryAgent:
    """
    Agent de télémétrie principal

    Contexte unique de l'agent : il possède la configuration, le logger,
    la session InfluxDB, le tampon d'écriture et le scheduler, et les
    transmet explicitement à chaque composant.
    """

    def __init__(self, config_path=None, config=None, session=None, inventory=None):
        """
        Initialise l'agent de télémétrie

        Args:
            config_path: Chemin vers le fichier de configuration
            config: Configuration déjà chargée (prioritaire sur config_path)
            session: SessionManager à utiliser (créé par défaut)
            inventory: Collecteur d'inventaire à utiliser (créé par défaut)
        """
        self.config = config or AgentConfig(config_path)

        self.logger = AgentLogger(self.config)
        self.app_logger = self.logger.get_logger()

        agent_config = self.config.get_agent_config()
        self.startup_retries = agent_config['startup_retries']
        self.retry_delay = agent_config['retry_delay']

        # Composants principaux
        self.session = session or SessionManager(self.config, self.logger)
        self.inventory = inventory or InventoryCollector(self.config, self.app_logger)
        self.shaper = MetricShaper(agent_config['gpu_vendor'], logger=self.app_logger)
        self.write_buffer = WriteBuffer(self.config, self.logger)
        self.scheduler = None

        # État de l'agent
        self.running = False
        self.shutdown_event = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shutdown_done = False

        self.app_logger.info("Agent de télémétrie initialisé")

    def start(self) -> bool:
        """
        Séquence de démarrage : connexion, initialisation, token,
        reconnexion avec le token, tampon d'écriture

        Les erreurs transitoires sont retentées, les erreurs
        d'initialisation arrêtent le démarrage.

        Returns:
            bool: True si l'agent est prêt à écrire
        """
        last_error = ""

        for attempt in range(self.startup_retries + 1):
            if attempt > 0:
                self.app_logger.info(f"Nouvelle tentative de démarrage dans {self.retry_delay} secondes "
                                     f"({attempt + 1}/{self.startup_retries + 1})")
                if self.shutdown_event.wait(timeout=self.retry_delay):
                    return False

            try:
                self._start_once()
                return True

            except SetupError as e:
                self.app_logger.error(f"Démarrage abandonné: {e}")
                return False

            except TransientError as e:
                last_error = str(e)
                self.app_logger.warning(f"Tentative {attempt + 1} échouée: {e}")

        self.app_logger.error(f"Échec du démarrage après {self.startup_retries + 1} tentatives. "
                              f"Dernière erreur: {last_error}")
        return False

    def _start_once(self):
        influx = self.config.get_influx_config()

        if self.session.connect() is None:
            raise TransientError(f"InfluxDB injoignable: {influx['url']}")

        self.session.bootstrap(self.config.get_setup_config())
        token = self.session.authorize(influx['username'], influx['password'], influx['org'])

        client = self.session.connect(token=token)
        if client is None:
            raise TransientError(f"InfluxDB injoignable: {influx['url']}")

        if not self.write_buffer.init(client, influx['org'], influx['bucket']):
            raise SetupError("Impossible de créer l'API d'écriture")

    def start_scheduler(self):
        """
        Démarre le planificateur de collectes
        """
        if self.scheduler:
            self.app_logger.warning("Le planificateur est déjà démarré")
            return

        self.scheduler = TelemetryScheduler(
            self.config,
            self.logger,
            self.inventory,
            self.write_buffer,
            shaper=self.shaper
        )
        self.scheduler.start()

    def collect_only(self):
        """
        Effectue une collecte unique mise en forme, sans écriture

        Returns:
            dict: Échantillon mis en forme, ou None en cas d'erreur
        """
        try:
            self.app_logger.info("=== Collecte unique ===")
            raw_sample = flatten(self.inventory.info(self.config.get_monitor_modules()))
            shaped = self.shaper.shape(raw_sample)
            self.app_logger.info(f"Collecte terminée: {shaped.entity_count()} entité(s)")
            return asdict(shaped)

        except Exception:
            self.app_logger.exception("Erreur lors de la collecte")
            return None

    def test_connection(self) -> bool:
        """Vérifie que InfluxDB répond au ping"""
        client = self.session.connect()
        self.session.close()
        return client is not None

    def run_service_mode(self) -> int:
        """
        Lance l'agent en mode service

        Les gestionnaires de signaux sont installés avant le démarrage,
        un signal reçu à tout moment déclenche la vidange et la déconnexion.

        Returns:
            int: Code de sortie
        """
        self.app_logger.info("Démarrage de l'agent de télémétrie en mode service")
        self.logger.log_config_info(self.config)

        self._setup_signal_handlers()
        self.running = True

        try:
            if not self.start():
                return 1

            if self.shutdown_event.is_set():
                return 0

            self.start_scheduler()
            self.app_logger.info("Agent de télémétrie démarré avec succès")

            while self.running and not self.shutdown_event.is_set():
                self.shutdown_event.wait(timeout=1.0)

            return 0

        except KeyboardInterrupt:
            self.app_logger.info("Interruption clavier détectée")
            return 0
        finally:
            self.shutdown()

    def _setup_signal_handlers(self):
        """
        Configure les gestionnaires de signaux pour l'arrêt propre
        """
        def signal_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            self.app_logger.info(f"Signal {signal_name} reçu - Arrêt en cours...")
            self.running = False
            self.shutdown_event.set()

        if hasattr(signal, 'SIGTERM'):
            signal.signal(signal.SIGTERM, signal_handler)

        if hasattr(signal, 'SIGINT'):
            signal.signal(signal.SIGINT, signal_handler)

        # Windows
        if hasattr(signal, 'SIGBREAK'):
            signal.signal(signal.SIGBREAK, signal_handler)

    def shutdown(self) -> bool:
        """
        Arrête proprement l'agent : scheduler, vidange du tampon, déconnexion

        Returns:
            bool: True si la vidange du tampon a réussi
        """
        with self._shutdown_lock:
            if self._shutdown_done:
                return True
            self._shutdown_done = True

        self.app_logger.info("Arrêt de l'agent de télémétrie...")

        self.running = False
        self.shutdown_event.set()

        if self.scheduler:
            self.scheduler.stop()

        flushed = True
        if self.write_buffer.is_ready:
            flushed = self.write_buffer.close()
            self.app_logger.info("API d'écriture fermée")

        if self.session.session:
            self.session.logout()

        self.session.close()

        self.app_logger.info("Agent de télémétrie arrêté proprement")
        return flushed

    def get_status(self):
        """
        Retourne le statut actuel de l'agent

        Returns:
            dict: Statut de tous les composants
        """
        return {
            'running': self.running,
            'session': self.session.state.value,
            'scheduler': self.scheduler.get_status() if self.scheduler else None,
            'write_buffer': self.write_buffer.get_stats(),
            'collector': self.inventory.get_collection_stats()
        }


def main():
    """
    Point d'entrée principal avec gestion des arguments de ligne de commande
    """
    parser = argparse.ArgumentParser(
        description='Agent de télémétrie - Collecte de métriques système vers InfluxDB'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        help='Chemin vers le fichier de configuration'
    )

    parser.add_argument(
        '--mode', '-m',
        choices=['service', 'collect', 'test'],
        default='service',
        help='Mode de fonctionnement de l\'agent'
    )

    parser.add_argument(
        '--create-config',
        action='store_true',
        help='Crée un fichier de configuration par défaut'
    )

    parser.add_argument(
        '--validate-config',
        action='store_true',
        help='Valide la configuration actuelle'
    )

    parser.add_argument(
        '--output', '-o',
        type=str,
        help='Fichier de sortie pour l\'échantillon (mode collect)'
    )

    args = parser.parse_args()

    if args.create_config:
        if not args.config:
            print("❌ --config est requis avec --create-config")
            return 1
        try:
            create_default_config(args.config)
            print(f"✅ Configuration par défaut créée: {args.config}")
            return 0
        except OSError as e:
            print(f"❌ Erreur création configuration: {e}")
            return 1

    if args.validate_config:
        if AgentConfig(args.config).validate():
            print("✅ Configuration valide")
            return 0
        print("❌ Configuration invalide")
        return 1

    try:
        agent = TelemetryAgent(args.config)
    except Exception as e:
        print(f"❌ Erreur initialisation agent: {e}")
        return 1

    if args.mode == 'service':
        return agent.run_service_mode()

    if args.mode == 'collect':
        data = agent.collect_only()
        if data is None:
            print("❌ Erreur lors de la collecte")
            return 1

        if args.output:
            with open(args.output, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            print(f"✅ Données sauvegardées dans: {args.output}")
        else:
            print(json.dumps(data, indent=2, ensure_ascii=False))
        return 0

    if args.mode == 'test':
        print("🧪 Test de la connexion à InfluxDB")
        start = time.time()
        if agent.test_connection():
            print(f"   ✅ Connexion OK ({time.time() - start:.2f}s)")
            return 0
        print("   ❌ InfluxDB injoignable")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
