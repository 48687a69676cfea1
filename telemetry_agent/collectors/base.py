"""
Socle commun des collecteurs de l'agent de télémétrie

Un collecteur expose des groupes de métriques nommés. La classe de base
se charge de les appeler, d'isoler leurs erreurs et de mesurer la durée
de chaque passage.
"""

import re
import time
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional


class GroupCollector(ABC):
    """
    Collecteur organisé en groupes de métriques

    Les sous-classes déclarent leurs groupes dans register_groups().
    Un groupe inconnu ou en erreur n'interrompt pas la collecte, il est
    simplement absent du résultat.
    """

    def __init__(self, config, logger):
        """
        Args:
            config: Instance de AgentConfig
            logger: Logger à utiliser
        """
        self.config = config
        self.logger = logger
        self.name = type(self).__name__
        self.groups: Dict[str, Callable[[], Any]] = self.register_groups()

        self.errors: List[str] = []
        self.last_duration = 0.0
        self.group_durations: Dict[str, float] = {}

    @abstractmethod
    def register_groups(self) -> Dict[str, Callable[[], Any]]:
        """
        Returns:
            dict: Nom du groupe -> fonction de collecte sans argument
        """

    def info(self, modules: List[str]) -> List[Dict[str, Any]]:
        """
        Collecte les groupes demandés, dans l'ordre demandé

        Args:
            modules: Noms des groupes de métriques

        Returns:
            list: [{nom_du_groupe: valeur}, ...]
        """
        started = time.monotonic()
        self.errors = []
        self.group_durations = {}
        results = []

        for module in modules:
            collect = self.groups.get(module)
            if collect is None:
                self.logger.warning(f"Groupe de métriques inconnu: {module}")
                continue

            value = self._run_group(module, collect)
            if value is not None:
                results.append({module: value})

        self.last_duration = time.monotonic() - started
        if self.errors:
            self.logger.warning(f"{self.name}: {len(self.errors)} groupe(s) en erreur")
        self.logger.debug(f"{self.name}: {len(results)} groupe(s) en {self.last_duration:.2f}s")
        return results

    def _run_group(self, module: str, collect: Callable[[], Any]) -> Optional[Any]:
        group_start = time.monotonic()
        try:
            return collect()
        except Exception as e:
            message = f"Erreur collecte {module}: {e}"
            self.errors.append(message)
            self.logger.warning(message)
            return None
        finally:
            self.group_durations[module] = time.monotonic() - group_start

    def _clean_string(self, value: str) -> str:
        """Supprime les caractères de contrôle et les espaces superflus"""
        if not value:
            return ""
        printable = ''.join(char for char in str(value) if char.isprintable())
        return re.sub(r'\s+', ' ', printable).strip()

    def _execute_command(self, command: List[str], timeout: int = 10) -> Optional[str]:
        """
        Lance un outil externe sans passer par un shell

        Args:
            command: Commande et arguments
            timeout: Délai maximal en secondes

        Returns:
            str: Sortie standard, None si l'outil est absent ou échoue
        """
        label = ' '.join(command)
        try:
            completed = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
        except FileNotFoundError:
            self.logger.debug(f"Outil absent: {command[0]}")
            return None
        except subprocess.TimeoutExpired:
            self.logger.warning(f"Délai dépassé pour '{label}'")
            return None
        except OSError as e:
            self.logger.warning(f"Impossible de lancer '{label}': {e}")
            return None

        if completed.returncode != 0:
            self.logger.debug(f"'{label}' a renvoyé le code {completed.returncode}")
            return None
        return completed.stdout.strip()

    def get_collection_stats(self) -> Dict[str, Any]:
        return {
            'collector_name': self.name,
            'collection_duration': self.last_duration,
            'group_durations': dict(self.group_durations),
            'errors_count': len(self.errors),
            'errors': list(self.errors)
        }
