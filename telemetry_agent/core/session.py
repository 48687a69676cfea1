"""
Gestion de la session InfluxDB pour l'agent de télémétrie

Ce module gère :
- La connexion et le test de disponibilité (ping)
- L'initialisation unique de la base (setup)
- L'authentification par cookie de session
- La rotation du token d'API de l'agent
- La déconnexion
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

import requests
from influxdb_client import InfluxDBClient

from .errors import NotFoundError, SetupError, StoreHTTPError, TransientError


TOKEN_DESCRIPTION = 'telemetry-api'


class SessionState(Enum):
    """États successifs d'une session"""
    UNAUTHENTICATED = "unauthenticated"
    SIGNED_IN = "signed_in"
    AUTHORIZED = "authorized"
    LOGGED_OUT = "logged_out"


class BootstrapStatus(Enum):
    """Résultat de l'initialisation de la base"""
    COMPLETED = "completed"
    ALREADY_SETUP = "already_setup"


def extract_session_cookie(set_cookie: Union[str, List[str], None]) -> str:
    """
    Construit l'en-tête Cookie à partir des en-têtes Set-Cookie d'une réponse

    Seule la paire nom=valeur de chaque cookie est conservée, les attributs
    (Path, Expires, HttpOnly...) sont ignorés.

    Args:
        set_cookie: Valeur Set-Cookie unique ou liste de valeurs

    Returns:
        str: Cookies séparés par "; "
    """
    if isinstance(set_cookie, str):
        values = [set_cookie]
    elif isinstance(set_cookie, (list, tuple)):
        values = list(set_cookie)
    else:
        values = []

    cookies = [value.split(';')[0].strip() for value in values]
    return '; '.join(cookie for cookie in cookies if cookie)


def _set_cookie_headers(response) -> Union[str, List[str], None]:
    """
    Récupère les en-têtes Set-Cookie sans la fusion faite par requests
    """
    raw_headers = getattr(getattr(response, 'raw', None), 'headers', None)
    if raw_headers is not None and hasattr(raw_headers, 'getlist'):
        values = raw_headers.getlist('Set-Cookie')
        if isinstance(values, list) and values:
            return values
    return response.headers.get('set-cookie')


class SessionManager:
    """
    Cycle de vie de la session avec InfluxDB

    Les appels REST (setup, signin, autorisations, organisations, signout)
    passent par une requests.Session partagée. Le client influxdb_client
    retourné par connect() sert ensuite à l'écriture des points.
    """

    def __init__(self, config, logger, http: Optional[requests.Session] = None):
        """
        Initialise le gestionnaire de session

        Args:
            config: Instance de AgentConfig
            logger: Instance de AgentLogger
            http: Session HTTP à utiliser (une nouvelle session par défaut)
        """
        self.config = config
        self.logger = logger.get_logger()

        influx_config = config.get_influx_config()
        self.url = influx_config['url']
        self.timeout_ms = influx_config['timeout']
        self.ping_timeout_ms = influx_config['ping_timeout']
        self.verify_ssl = influx_config['verify_ssl']

        self.http = http or requests.Session()
        self.http.headers.setdefault('User-Agent', 'TelemetryAgent/1.0.0')

        self.client: Optional[InfluxDBClient] = None
        self.session: Optional[str] = None
        self.token: Optional[str] = None
        self.state = SessionState.UNAUTHENTICATED

        self.logger.info("SessionManager initialisé")
        self.logger.info(f"URL InfluxDB: {self.url}")

    def _request(self, method: str, path: str, authenticated: bool = True,
                 timeout_ms: Optional[int] = None, **kwargs) -> requests.Response:
        """
        Effectue une requête REST vers InfluxDB

        Raises:
            TransientError: Timeout ou erreur de connexion
            SetupError: URL InfluxDB inutilisable
            StoreHTTPError: Réponse HTTP en erreur
        """
        headers = kwargs.pop('headers', {})
        if authenticated and self.session:
            headers['Cookie'] = self.session

        timeout = (timeout_ms or self.timeout_ms) / 1000

        try:
            response = self.http.request(
                method,
                f"{self.url}{path}",
                headers=headers,
                timeout=timeout,
                verify=self.verify_ssl,
                **kwargs
            )
        except requests.exceptions.Timeout as e:
            raise TransientError(f"Timeout sur {path} (>{timeout}s)") from e
        except requests.exceptions.ConnectionError as e:
            raise TransientError(f"Erreur de connexion sur {path}: {e}") from e
        except (requests.exceptions.InvalidURL, requests.exceptions.InvalidSchema,
                requests.exceptions.MissingSchema) as e:
            raise SetupError(f"URL InfluxDB invalide ({self.url}): {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransientError(f"Erreur HTTP sur {path}: {e}") from e

        if response.status_code >= 400:
            raise StoreHTTPError(response.status_code, self._error_message(response), path)

        return response

    @staticmethod
    def _error_message(response) -> str:
        try:
            return response.json().get('message', response.text[:200])
        except (ValueError, AttributeError):
            return response.text[:200]

    def connect(self, token: Optional[str] = None) -> Optional[InfluxDBClient]:
        """
        Crée le client InfluxDB et vérifie que le serveur répond

        Args:
            token: Token d'API (None pour une connexion anonyme)

        Returns:
            InfluxDBClient: Client prêt, ou None si le serveur ne répond pas
        """
        try:
            self._request('GET', '/ping', authenticated=False, timeout_ms=self.ping_timeout_ms)
        except (TransientError, SetupError, StoreHTTPError) as e:
            self.logger.error(f"InfluxDB injoignable: {e}")
            return None

        if self.client is not None:
            self.client.close()

        self.client = InfluxDBClient(
            url=self.url,
            token=token,
            timeout=self.timeout_ms,
            verify_ssl=self.verify_ssl
        )
        self.logger.info(f"Connecté à InfluxDB ({'token' if token else 'anonyme'})")
        return self.client

    def bootstrap(self, init_config: Dict[str, Any]) -> BootstrapStatus:
        """
        Initialise la base si ce n'est pas déjà fait

        Args:
            init_config: username, password, org, bucket (et retentionPeriodSeconds)

        Returns:
            BootstrapStatus: COMPLETED ou ALREADY_SETUP

        Raises:
            SetupError: Si l'initialisation est refusée par le serveur
            TransientError: Si le serveur ne répond pas
        """
        try:
            allowed = self._request('GET', '/api/v2/setup', authenticated=False).json().get('allowed', False)
            if not allowed:
                self.logger.info("InfluxDB déjà initialisé")
                return BootstrapStatus.ALREADY_SETUP

            self._request('POST', '/api/v2/setup', authenticated=False, json=init_config)

        except StoreHTTPError as e:
            self.logger.error(f"Erreur lors de l'initialisation d'InfluxDB: {e}")
            if e.is_transient:
                raise TransientError(str(e)) from e
            raise SetupError(str(e)) from e
        except TransientError as e:
            self.logger.error(f"Erreur lors de l'initialisation d'InfluxDB: {e}")
            raise
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            self.logger.error(f"Réponse inattendue de /api/v2/setup: {e!r}")
            raise SetupError(f"Réponse inattendue de /api/v2/setup: {e!r}") from e

        self.logger.info(f"Initialisation d'InfluxDB terminée (org: {init_config.get('org')})")
        return BootstrapStatus.COMPLETED

    def signin(self, username: str, password: str) -> str:
        """
        Ouvre une session avec un nom d'utilisateur et un mot de passe

        Returns:
            str: En-tête Cookie de la session

        Raises:
            SetupError: Identifiants refusés
            TransientError: Serveur injoignable
        """
        try:
            response = self._request('POST', '/api/v2/signin', authenticated=False,
                                     auth=(username, password))
        except StoreHTTPError as e:
            self.logger.error(f"Échec de l'authentification de {username}: {e.message}")
            if e.is_transient:
                raise TransientError(str(e)) from e
            raise SetupError(str(e)) from e

        self.session = extract_session_cookie(_set_cookie_headers(response))
        self.state = SessionState.SIGNED_IN
        self.logger.info(f"Session ouverte pour {username}")
        return self.session

    def authorize(self, username: str, password: str, org: str) -> str:
        """
        Remplace le token d'API de l'agent par un nouveau token

        Ouvre une session, supprime les tokens existants portant la
        description de l'agent dans l'organisation, puis crée un token
        en lecture/écriture sur les buckets de l'organisation.

        Args:
            username: Nom d'utilisateur
            password: Mot de passe
            org: Nom de l'organisation

        Returns:
            str: Nouveau token

        Raises:
            NotFoundError: Organisation introuvable
            SetupError: Requête refusée par le serveur
            TransientError: Serveur injoignable
        """
        try:
            self.signin(username, password)

            response = self._request('GET', '/api/v2/authorizations')
            authorizations = response.json().get('authorizations') or []

            org_id = self._find_org_id(org)

            previous = [
                a for a in authorizations
                if a.get('description') == TOKEN_DESCRIPTION and a.get('orgID') in (None, org_id)
            ]
            for authorization in previous:
                self._request('DELETE', f"/api/v2/authorizations/{authorization['id']}")
                self.logger.info(f"Ancien token {TOKEN_DESCRIPTION} supprimé ({authorization['id']})")

            body = {
                'description': TOKEN_DESCRIPTION,
                'orgID': org_id,
                'permissions': [
                    {'action': 'read', 'resource': {'type': 'buckets', 'orgID': org_id}},
                    {'action': 'write', 'resource': {'type': 'buckets', 'orgID': org_id}},
                ]
            }
            token = self._request('POST', '/api/v2/authorizations', json=body).json()['token']

        except NotFoundError as e:
            self.logger.error(str(e))
            raise
        except StoreHTTPError as e:
            self.logger.error(f"Erreur lors de la création du token: {e.message}")
            if e.is_transient:
                raise TransientError(str(e)) from e
            raise SetupError(str(e)) from e
        except TransientError as e:
            self.logger.error(f"Erreur lors de la création du token: {e}")
            raise
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            self.logger.error(f"Réponse inattendue lors de la création du token: {e!r}")
            raise SetupError(f"Réponse inattendue lors de la création du token: {e!r}") from e

        self.token = token
        self.state = SessionState.AUTHORIZED
        self.logger.info(f"Token {TOKEN_DESCRIPTION} créé pour l'organisation {org}")
        return token

    def _find_org_id(self, org: str) -> str:
        try:
            orgs = self._request('GET', '/api/v2/orgs', params={'org': org}).json().get('orgs') or []
        except StoreHTTPError as e:
            if e.status_code != 404:
                raise
            orgs = []

        if not orgs:
            raise NotFoundError(f"Aucune organisation nommée {org}")
        return orgs[0]['id']

    def logout(self) -> bool:
        """
        Ferme la session côté serveur et oublie le cookie local

        Returns:
            bool: True si le serveur a confirmé la déconnexion
        """
        success = False
        if self.session:
            try:
                self._request('POST', '/api/v2/signout')
                success = True
                self.logger.info("Session fermée")
            except (TransientError, StoreHTTPError) as e:
                self.logger.error(f"Erreur lors de la déconnexion: {e}")
        else:
            self.logger.warning("Aucune session ouverte")

        self.session = None
        self.http.cookies.clear()
        self.state = SessionState.LOGGED_OUT
        return success

    def close(self):
        """Libère le client InfluxDB et la session HTTP"""
        if self.client is not None:
            self.client.close()
            self.client = None
        self.http.close()
