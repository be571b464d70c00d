"""
Web API acquisition of Teleporter archives.

Pi-hole exposes two API generations:
- Modern (v6+): POST /api/auth yields a session id and CSRF token that are
  sent back as a cookie/header pair.
- Legacy: the web password is passed as the 'auth' or 'token' query
  parameter on every request.

Authentication and archive retrieval both walk an ordered list of candidate
endpoints and stop at the first one that succeeds.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Callable, Iterable, Tuple

import httpx

from piholevault.models import WebConnection
from .errors import AuthenticationError, AcquisitionError, ConnectionFailedError


logger = logging.getLogger(__name__)

USER_AGENT = 'PiHoleVault/1.0'

METHOD_MODERN = 'modern-cookie'
METHOD_LEGACY = 'legacy-token'

MIN_TEXT_ARCHIVE_SIZE = 1000
MIN_BINARY_ARCHIVE_SIZE = 100

HTML_MARKERS = (b'<!DOCTYPE', b'<html')
ARCHIVE_MAGIC = (
    (b'\x1f\x8b', 'gzip'),
    (b'PK', 'zip'),
    (b'BZ', 'bzip2'),
    (b'ustar', 'tar'),
)
JSON_ARCHIVE_KEYS = ('data', 'content', 'backup')

MODERN_ARCHIVE_ENDPOINTS = (
    '/api/teleporter',
    '/admin/api/teleporter',
    '/api/scripts/pi-hole/php/teleporter.php',
    '/admin/scripts/pi-hole/php/teleporter.php',
)

_SID_COOKIE = re.compile(r'(?:^|[;,\s])sid=([^;,\s]+)')
_CSRF_COOKIE = re.compile(r'(?:^|[;,\s])csrf=([^;,\s]+)')


@dataclass
class AuthSession:
    """
    Result of a successful authentication handshake.

    Only valid together with the httpx.Client it was derived on, since the
    cookie and CSRF headers live on that client.
    """

    method: str
    base_url: str
    endpoint: str
    token: Optional[str] = field(default=None, repr=False)
    session_id: Optional[str] = field(default=None, repr=False)
    csrf_token: Optional[str] = field(default=None, repr=False)
    validity: Optional[int] = None

    @property
    def is_modern(self) -> bool:
        return self.method == METHOD_MODERN


@dataclass
class ArchivePayload:
    content: bytes
    endpoint: str
    format: str


@dataclass
class Selection:
    """Outcome of select_first_valid()."""

    value: Any = None
    label: Optional[str] = None
    failures: List[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.label is not None


def select_first_valid(
    candidates: Iterable[Tuple[str, Callable[[], Any]]],
    validate: Callable[[Any], Tuple[bool, str]],
    recoverable: Tuple[type, ...] = (Exception,)
) -> Selection:
    """
    Evaluate candidates in order and return the first valid result.

    Each candidate is a (label, thunk) pair; thunks are only called until one
    of them produces a value that passes validation.

    Args:
        candidates: Ordered (label, thunk) pairs
        validate: Function returning (is_valid, reason) for a thunk's result
        recoverable: Exception types that count as a failed candidate

    Returns:
        Selection with the winning value and label, or with label None and
        the list of failures if no candidate was valid
    """
    failures = []

    for label, attempt in candidates:
        try:
            value = attempt()
        except recoverable as e:
            failures.append(f"{label}: {e}")
            logger.debug(f"Candidate {label} raised: {e}")
            continue

        is_valid, reason = validate(value)
        if is_valid:
            return Selection(value=value, label=label, failures=failures)

        failures.append(f"{label}: {reason}")
        logger.debug(f"Candidate {label} rejected: {reason}")

    return Selection(failures=failures)


def detect_archive_format(content: bytes) -> Optional[str]:
    """
    Identify a binary archive from its magic bytes.

    Returns:
        'gzip', 'zip', 'bzip2', 'tar' or None
    """
    for magic, name in ARCHIVE_MAGIC:
        if content.startswith(magic):
            return name
    # POSIX tar keeps its magic at offset 257
    if content[257:262] == b'ustar':
        return 'tar'
    return None


def _is_text(content: bytes) -> bool:
    try:
        content.decode('utf-8')
    except UnicodeDecodeError:
        return False
    return True


def validate_archive_payload(content: bytes, content_type: str = '') -> Tuple[bool, str]:
    """
    Decide whether a response body is a Teleporter archive.

    Rules, in order:
    - empty bodies are rejected
    - bodies containing '<!DOCTYPE' or '<html' are error pages and rejected
    - bodies starting with a gzip/zip/bzip2/tar magic sequence are accepted
    - JSON bodies are accepted when they carry a data/content/backup key
    - other text bodies need more than 1000 bytes, binary ones more than 100

    Args:
        content: Response body
        content_type: Response Content-Type header

    Returns:
        Tuple of (is_valid, reason)
    """
    if not content:
        return False, 'empty response body'

    if any(marker in content for marker in HTML_MARKERS):
        return False, 'received HTML page instead of backup data'

    archive_format = detect_archive_format(content)
    if archive_format:
        return True, f'{archive_format} archive'

    if 'json' in (content_type or '').lower():
        try:
            data = json.loads(content)
        except ValueError:
            return False, 'malformed JSON response'
        if isinstance(data, dict) and any(key in data for key in JSON_ARCHIVE_KEYS):
            return True, 'structured backup payload'
        return False, 'JSON response without backup data'

    if _is_text(content):
        if len(content) > MIN_TEXT_ARCHIVE_SIZE:
            return True, f'text payload of {len(content)} bytes'
        return False, f'text payload too small ({len(content)} bytes)'

    if len(content) > MIN_BINARY_ARCHIVE_SIZE:
        return True, f'binary payload of {len(content)} bytes'
    return False, f'binary payload too small ({len(content)} bytes)'


def build_base_url(host: str, port: int = 80, use_https: bool = False) -> str:
    """
    Build the management interface base URL.

    A host that already carries an http:// or https:// scheme (for example
    'https://pihole.example.com/admin') is used as given.
    """
    host = host.strip()
    if host.startswith('http://') or host.startswith('https://'):
        return host.rstrip('/')

    scheme = 'https' if use_https else 'http'
    default_port = 443 if use_https else 80
    if port and int(port) != default_port:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


class WebAcquisitionClient:
    """
    Retrieves Teleporter archives through the Pi-hole web interface.
    """

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize web acquisition client.

        Args:
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.timeout = timeout
        self.transport = transport

    def create_http_client(self, connection: WebConnection) -> httpx.Client:
        """Create an HTTP client bound to the connection's base URL."""
        return httpx.Client(
            base_url=build_base_url(connection.host, connection.web_port, connection.use_https),
            timeout=self.timeout,
            verify=False,
            follow_redirects=True,
            headers={'User-Agent': USER_AGENT},
            transport=self.transport
        )

    def test_connection(self, connection: WebConnection) -> Dict[str, Any]:
        """
        Check that the web interface answers.

        Returns:
            Dict with 'success' and 'message' or 'error'
        """
        try:
            with self.create_http_client(connection) as client:
                response = client.get('/admin/')
        except httpx.HTTPError as e:
            return {'success': False, 'error': str(e)}

        if response.status_code == 200:
            return {'success': True, 'message': 'Pi-hole web interface is accessible'}
        return {'success': False, 'error': f'Web interface returned HTTP {response.status_code}'}

    def authenticate(self, connection: WebConnection, http_client: Optional[httpx.Client] = None) -> AuthSession:
        """
        Authenticate against the first API generation that accepts the password.

        Args:
            connection: Web connection settings
            http_client: Client to authenticate; session headers are attached to it.
                A temporary client is used when omitted.

        Returns:
            AuthSession

        Raises:
            AuthenticationError: If every candidate endpoint failed
        """
        if http_client is None:
            with self.create_http_client(connection) as client:
                return self.authenticate(connection, client)

        password = connection.web_password
        json_headers = {'Content-Type': 'application/json'}

        candidates = [
            ('POST /api/auth', lambda: http_client.post('/api/auth', json={'password': password}, headers=json_headers)),
            ('POST /admin/api/auth', lambda: http_client.post('/admin/api/auth', json={'password': password}, headers=json_headers)),
            ('GET /admin/api.php?summary', lambda: http_client.get('/admin/api.php', params={'auth': password, 'summary': ''})),
            ('GET /api.php?summary', lambda: http_client.get('/api.php', params={'auth': password, 'summary': ''})),
            ('GET /admin/api.php?topItems', lambda: http_client.get('/admin/api.php', params={'auth': password, 'topItems': '10'})),
            ('GET /api.php?topItems', lambda: http_client.get('/api.php', params={'auth': password, 'topItems': '10'})),
        ]

        selection = select_first_valid(candidates, self._check_auth_response, recoverable=(httpx.HTTPError,))

        if not selection.found:
            logger.error(
                f"Pi-hole web authentication failed for {connection.host[:50]} "
                f"after {len(selection.failures)} attempts"
            )
            raise AuthenticationError(
                "All authentication methods failed",
                method='web',
                failures=selection.failures
            )

        http_method, endpoint = selection.label.split(' ', 1)
        response = selection.value
        base_url = str(http_client.base_url).rstrip('/')

        if http_method == 'POST':
            session = self._modern_session(response, base_url, endpoint.split('?')[0])
            self._attach_session(http_client, session)
        else:
            session = AuthSession(
                method=METHOD_LEGACY,
                base_url=base_url,
                endpoint=endpoint.split('?')[0],
                token=password
            )

        logger.info(
            f"Pi-hole authentication successful (host={connection.host[:50]}, "
            f"endpoint={session.endpoint}, method={session.method}, "
            f"session={'yes' if session.session_id else 'no'})"
        )
        return session

    def acquire(self, connection: WebConnection) -> ArchivePayload:
        """
        Authenticate and download the Teleporter archive.

        Args:
            connection: Web connection settings

        Returns:
            ArchivePayload with the archive bytes, winning endpoint and format

        Raises:
            AuthenticationError: If authentication failed
            AcquisitionError: If every archive endpoint failed validation
            ConnectionFailedError: If the HTTP client could not be used at all
        """
        logger.info(f"Starting web-only backup from {connection.host[:50]}")

        try:
            with self.create_http_client(connection) as client:
                session = self.authenticate(connection, client)
                return self._fetch_archive(client, session)
        except httpx.InvalidURL as e:
            raise ConnectionFailedError(f"Invalid Pi-hole address {connection.host!r}: {e}") from e

    def archive_candidates(self, client: httpx.Client, session: AuthSession) -> List[Tuple[str, Callable[[], httpx.Response]]]:
        """
        Build the ordered archive endpoint list for the session's API generation.
        """
        if session.is_modern:
            return [(endpoint, (lambda e=endpoint: client.get(e))) for endpoint in MODERN_ARCHIVE_ENDPOINTS]

        token = session.token
        return [
            ('/admin/scripts/pi-hole/php/teleporter.php',
             lambda: client.get('/admin/scripts/pi-hole/php/teleporter.php', params={'token': token})),
            ('/scripts/pi-hole/php/teleporter.php',
             lambda: client.get('/scripts/pi-hole/php/teleporter.php', params={'token': token})),
            ('/admin/api.php?action=teleporter',
             lambda: client.get('/admin/api.php', params={'auth': token, 'action': 'teleporter'})),
            ('/api.php?action=teleporter',
             lambda: client.get('/api.php', params={'auth': token, 'action': 'teleporter'})),
        ]

    def _fetch_archive(self, client: httpx.Client, session: AuthSession) -> ArchivePayload:
        candidates = self.archive_candidates(client, session)
        logger.info(f"Attempting backup retrieval with {len(candidates)} endpoints (method={session.method})")

        selection = select_first_valid(candidates, self._check_archive_response, recoverable=(httpx.HTTPError,))

        if not selection.found:
            for failure in selection.failures:
                logger.info(f"Backup endpoint failed: {failure}")
            raise AcquisitionError("Failed to retrieve backup from Pi-hole API", failures=selection.failures)

        content = selection.value.content
        archive_format = detect_archive_format(content) or 'zip'
        logger.info(f"Backup retrieved from {selection.label} ({len(content)} bytes, format={archive_format})")

        return ArchivePayload(content=content, endpoint=selection.label, format=archive_format)

    @staticmethod
    def _check_auth_response(response: httpx.Response) -> Tuple[bool, str]:
        if response.status_code != 200:
            return False, f'HTTP {response.status_code}'

        # Modern API answers 200 with session.valid=false for a wrong password
        if 'json' in response.headers.get('content-type', ''):
            try:
                body = response.json()
            except ValueError:
                return True, 'ok'
            session = body.get('session') if isinstance(body, dict) else None
            if isinstance(session, dict) and session.get('valid') is False:
                return False, session.get('message') or 'session rejected'

        return True, 'ok'

    @staticmethod
    def _check_archive_response(response: httpx.Response) -> Tuple[bool, str]:
        if response.status_code != 200:
            return False, f'HTTP {response.status_code}'
        return validate_archive_payload(response.content, response.headers.get('content-type', ''))

    @staticmethod
    def _modern_session(response: httpx.Response, base_url: str, endpoint: str) -> AuthSession:
        session = AuthSession(method=METHOD_MODERN, base_url=base_url, endpoint=endpoint)

        try:
            body = response.json()
        except ValueError:
            body = None

        body_session = body.get('session') if isinstance(body, dict) else None
        if isinstance(body_session, dict) and body_session.get('sid'):
            session.session_id = body_session.get('sid')
            session.csrf_token = body_session.get('csrf')
            session.validity = body_session.get('validity')
            return session

        for cookie in response.headers.get_list('set-cookie'):
            sid_match = _SID_COOKIE.search(cookie)
            if sid_match and not session.session_id:
                session.session_id = sid_match.group(1)
            csrf_match = _CSRF_COOKIE.search(cookie)
            if csrf_match and not session.csrf_token:
                session.csrf_token = csrf_match.group(1)

        if not session.session_id:
            logger.warning(f"{endpoint} accepted the password but returned no session id")
        return session

    @staticmethod
    def _attach_session(client: httpx.Client, session: AuthSession):
        if not session.session_id:
            return

        cookie = f"sid={session.session_id}"
        if session.csrf_token:
            cookie += f"; csrf={session.csrf_token}"
            client.headers['X-CSRF-TOKEN'] = session.csrf_token
        client.headers['Cookie'] = cookie
        client.headers['X-FTL-SID'] = session.session_id
