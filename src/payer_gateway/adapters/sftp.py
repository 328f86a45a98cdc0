"""
SFTP Adapter

Stateful binding over a paramiko SSH session. The session opened by
``connect`` is reused until ``disconnect``; operations against one partner
run one at a time under an asyncio lock, and paramiko's blocking calls run
in worker threads.
"""

import asyncio
import errno
import io
import posixpath
import stat
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

import paramiko

from ..config import PartnerConfig
from ..enums import IntegrationStatus, Protocol
from ..exceptions import ConfigurationError, ConnectivityError, GatewayError, RemoteError
from ..models import DateWindow, HealthStatus, RawResponse, RemoteFile, RequestOptions
from .base import ProtocolAdapter

DEFAULT_SFTP_PORT = 22
_KEY_TYPES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


def load_private_key(pem: str, passphrase: str | None = None) -> paramiko.PKey:
    """Parse a PEM/OpenSSH private key of any supported type."""
    for key_type in _KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(pem), password=passphrase)
        except paramiko.SSHException:
            continue
    raise ConfigurationError("Unsupported or undecryptable SFTP private key")


class SFTPAdapter(ProtocolAdapter):
    """Upload on PUT/POST, download on GET, list+filter+fetch for date windows."""

    protocol = Protocol.SFTP

    def __init__(self, config: PartnerConfig, client_factory=paramiko.SSHClient):
        super().__init__(config)
        parsed = urlparse(config.base_url if "://" in config.base_url else f"sftp://{config.base_url}")
        self.host = parsed.hostname or ""
        self.port = config.port or parsed.port or DEFAULT_SFTP_PORT
        self.root = parsed.path or "/"
        self._client_factory = client_factory
        self._client: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None
        self._lock = asyncio.Lock()

    def remote_path(self, endpoint: str) -> str:
        return posixpath.normpath(posixpath.join(self.root, endpoint.lstrip("/")))

    def _open_session(self, timeout: float) -> None:
        credentials = self.config.credentials
        client = self._client_factory()
        if self.config.known_hosts:
            client.load_host_keys(self.config.known_hosts)
        else:
            client.load_system_host_keys()
        client.set_missing_host_key_policy(
            paramiko.RejectPolicy() if self.config.verify_host_key else paramiko.AutoAddPolicy()
        )
        pkey = (
            load_private_key(credentials.private_key, credentials.passphrase)
            if credentials.private_key
            else None
        )
        client.connect(
            self.host,
            port=self.port,
            username=credentials.username,
            password=credentials.password,
            pkey=pkey,
            timeout=timeout,
            look_for_keys=False,
            allow_agent=False,
        )
        self._client = client
        self._sftp = client.open_sftp()

    def _close_session(self) -> None:
        if self._sftp is not None:
            self._sftp.close()
        if self._client is not None:
            self._client.close()
        self._sftp = None
        self._client = None

    def _translate(self, exc: BaseException, path: str) -> GatewayError:
        if isinstance(exc, GatewayError):
            return exc
        if isinstance(exc, paramiko.AuthenticationException):
            return RemoteError(f"SFTP authentication failed: {exc}", 401, details={"path": path})
        if isinstance(exc, FileNotFoundError) or getattr(exc, "errno", None) == errno.ENOENT:
            return RemoteError(f"Remote file not found: {path}", 404, details={"path": path})
        if isinstance(exc, PermissionError) or getattr(exc, "errno", None) == errno.EACCES:
            return RemoteError(f"Permission denied: {path}", 403, details={"path": path})
        return ConnectivityError(
            f"SFTP operation on {path} failed: {exc}",
            details={"path": path, "type": exc.__class__.__name__},
        )

    async def connect(self) -> None:
        async with self._lock:
            await self._ensure_session(10.0)

    async def _ensure_session(self, timeout: float) -> None:
        if self._sftp is not None:
            return
        try:
            await self._in_thread(self._open_session, timeout)
        except (paramiko.SSHException, OSError, EOFError) as e:
            await asyncio.to_thread(self._close_session)
            raise self._translate(e, self.host) from e
        self.connected = True
        self.logger.info(
            "Connected to SFTP partner", partner_id=self.partner_id, host=self.host, port=self.port
        )

    async def _in_thread(self, func, *args):
        """Run a blocking session call in a worker thread.

        A cancelled caller still waits for the worker to return and then drops
        the session, so the lock is never released while paramiko is busy.
        """
        worker = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.shield(worker)
        except asyncio.CancelledError:
            await asyncio.gather(worker, return_exceptions=True)
            await asyncio.to_thread(self._close_session)
            self.connected = False
            raise

    async def disconnect(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._close_session)
            self.connected = False
        self.logger.info("Disconnected from SFTP partner", partner_id=self.partner_id)

    # Blocking helpers, run in worker threads

    def _makedirs(self, directory: str) -> None:
        parts = [p for p in directory.split("/") if p]
        current = "/" if directory.startswith("/") else ""
        for part in parts:
            current = posixpath.join(current, part) if current else part
            try:
                self._sftp.stat(current)
            except FileNotFoundError:
                self._sftp.mkdir(current)

    def _upload(self, path: str, body: bytes) -> None:
        self._makedirs(posixpath.dirname(path))
        self._sftp.putfo(io.BytesIO(body), path)

    def _download(self, path: str) -> bytes:
        with self._sftp.open(path, "rb") as remote:
            return remote.read()

    def _fetch_window(self, directory: str, window: DateWindow) -> list[RemoteFile]:
        files = []
        for attrs in self._sftp.listdir_attr(directory):
            if attrs.filename in (".", "..") or (
                attrs.st_mode is not None and stat.S_ISDIR(attrs.st_mode)
            ):
                continue
            modified = datetime.fromtimestamp(attrs.st_mtime or 0, tz=timezone.utc)
            if not window.contains(modified):
                continue
            path = posixpath.join(directory, attrs.filename)
            files.append(
                RemoteFile(
                    filename=attrs.filename,
                    path=path,
                    content=self._download(path),
                    modified=modified,
                )
            )
        return files

    async def send(
        self, endpoint: str, method: str, body: Any, options: RequestOptions
    ) -> RawResponse:
        method = method.upper()
        path = self.remote_path(endpoint)
        started = time.perf_counter()
        async with self._lock:
            try:
                await self._ensure_session(options.timeout_seconds)
                raw = await self._dispatch(method, path, body)
            except GatewayError as e:
                self.log_call(endpoint, method, options, started, getattr(e, "status_code", None), e)
                raise
            except (paramiko.SSHException, OSError, EOFError) as e:
                error = self._translate(e, path)
                if isinstance(error, ConnectivityError):
                    # the session is unusable; the next call reconnects
                    await asyncio.to_thread(self._close_session)
                    self.connected = False
                self.log_call(endpoint, method, options, started, getattr(error, "status_code", None), error)
                raise error from e
        self.log_call(endpoint, method, options, started, raw.status_code)
        return raw

    async def _dispatch(self, method: str, path: str, body: Any) -> RawResponse:
        if method in ("PUT", "POST"):
            if isinstance(body, str):
                body = body.encode("utf-8")
            await self._in_thread(self._upload, path, body or b"")
            return RawResponse(status_code=201, headers={"remote_path": path})
        if method == "GET":
            if isinstance(body, DateWindow):
                files = await self._in_thread(self._fetch_window, path, body)
                return RawResponse(status_code=200, headers={"remote_path": path}, files=files)
            content = await self._in_thread(self._download, path)
            return RawResponse(status_code=200, body=content, headers={"remote_path": path})
        raise RemoteError(
            f"SFTP does not support method {method}", 405, details={"path": path}
        )

    async def health(self) -> HealthStatus:
        started = time.perf_counter()
        try:
            async with self._lock:
                await self._ensure_session(10.0)
                await self._in_thread(self._sftp.listdir, self.root)
        except GatewayError as e:
            return HealthStatus(
                partner_id=self.partner_id,
                status=IntegrationStatus.ERROR,
                response_time_ms=(time.perf_counter() - started) * 1000,
                message=e.message,
                details=e.to_dict(),
            )
        except (paramiko.SSHException, OSError, EOFError) as e:
            error = self._translate(e, self.root)
            return HealthStatus(
                partner_id=self.partner_id,
                status=IntegrationStatus.ERROR,
                response_time_ms=(time.perf_counter() - started) * 1000,
                message=error.message,
                details=error.to_dict(),
            )
        return HealthStatus(
            partner_id=self.partner_id,
            status=IntegrationStatus.ACTIVE,
            response_time_ms=(time.perf_counter() - started) * 1000,
            message=f"Listed {self.root}",
        )
