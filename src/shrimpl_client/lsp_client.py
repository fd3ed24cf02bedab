from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import IntEnum
from fnmatch import fnmatch
import itertools
import json
import logging
import os
from pathlib import Path, PurePath
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeAlias

from shrimpl_client.config import DEFAULT_HANDSHAKE_TIMEOUT_SECONDS
from shrimpl_client.exceptions import (
    HandshakeFailure,
    LaunchFailure,
    LspClientError,
    ShutdownFailure,
)
from shrimpl_client.host import WorkspaceFolder
from shrimpl_client.invariants import never

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]

OUTPUT_LOGGER_NAME = "shrimpl_client"
TRACE_LOGGER_NAME = "shrimpl_client.trace"

CLIENT_ID = "shrimplLanguageServer"
CLIENT_NAME = "Shrimpl Language Server"
LANGUAGE_ID = "shrimpl"
FILE_WATCH_PATTERN = "**/*.shr"
DEBUG_FLAG = "--debug"

DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 5.0

_METHOD_NOT_FOUND = -32601

_LOG_MESSAGE_LEVELS: dict[int, int] = {
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
    4: logging.DEBUG,
}

_NULL_RESULT_REQUESTS = frozenset(
    {
        "client/registerCapability",
        "client/unregisterCapability",
        "window/showMessageRequest",
        "window/workDoneProgress/create",
    }
)

ProcessFactory = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class Executable:
    command: str
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)

    def argv(self) -> list[str]:
        return [self.command, *self.args]


@dataclass(frozen=True)
class ServerOptions:
    run: Executable
    debug: Executable


def derive_child_environment(
    parent: Mapping[str, str],
    overrides: Mapping[str, str] | None = None,
) -> dict[str, str]:
    env = dict(parent)
    if overrides:
        env.update(overrides)
    return env


def server_options(
    command: str,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, str] | None = None,
) -> ServerOptions:
    if not command:
        never("empty language server command")
    env = MappingProxyType(
        derive_child_environment(os.environ if environ is None else environ, overrides)
    )
    return ServerOptions(
        run=Executable(command=command, args=(), env=env),
        debug=Executable(command=command, args=(DEBUG_FLAG,), env=env),
    )


@dataclass(frozen=True)
class DocumentFilter:
    scheme: str
    language: str

    def matches(self, scheme: str, language_id: str) -> bool:
        return self.scheme == scheme and self.language == language_id


DEFAULT_DOCUMENT_SELECTOR: tuple[DocumentFilter, ...] = (
    DocumentFilter(scheme="file", language=LANGUAGE_ID),
    DocumentFilter(scheme="untitled", language=LANGUAGE_ID),
)


class FileChangeType(IntEnum):
    CREATED = 1
    CHANGED = 2
    DELETED = 3


@dataclass(frozen=True)
class FileEvent:
    path: str
    type: FileChangeType

    def as_params(self) -> JSONObject:
        return {"uri": Path(self.path).absolute().as_uri(), "type": int(self.type)}


@dataclass(frozen=True)
class ClientOptions:
    document_selector: tuple[DocumentFilter, ...] = DEFAULT_DOCUMENT_SELECTOR
    file_watch_pattern: str = FILE_WATCH_PATTERN
    workspace_folders: tuple[WorkspaceFolder, ...] = ()
    output_log: logging.Logger = field(default=logging.getLogger(OUTPUT_LOGGER_NAME))
    trace_log: logging.Logger = field(default=logging.getLogger(TRACE_LOGGER_NAME))
    debug: bool = False
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT_SECONDS
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS

    def selects(self, scheme: str, language_id: str) -> bool:
        return any(item.matches(scheme, language_id) for item in self.document_selector)

    def watches(self, path: str | PurePath) -> bool:
        candidate = PurePath(path)
        pattern = self.file_watch_pattern
        if pattern.startswith("**/"):
            return fnmatch(candidate.name, pattern[3:])
        return fnmatch(candidate.as_posix(), pattern)


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _encode_rpc(message: JSONObject) -> bytes:
    payload = json.dumps(message).encode("utf-8")
    header = f"Content-Length: {len(payload)}\r\n\r\n".encode("utf-8")
    return header + payload


async def _read_rpc(stream: asyncio.StreamReader) -> JSONObject:
    try:
        header = await stream.readuntil(b"\r\n\r\n")
    except asyncio.IncompleteReadError as exc:
        raise LspClientError("LSP stream closed") from exc
    except asyncio.LimitOverrunError as exc:
        raise LspClientError("LSP header too large") from exc
    length = 0
    for line in header.split(b"\r\n"):
        if line.lower().startswith(b"content-length:"):
            try:
                length = int(line.split(b":", 1)[1].strip())
            except ValueError:
                length = 0
            break
    if length <= 0:
        raise LspClientError("Invalid LSP Content-Length")
    try:
        body = await stream.readexactly(length)
    except asyncio.IncompleteReadError as exc:
        raise LspClientError("LSP stream closed") from exc
    try:
        message = json.loads(body.decode("utf-8"))
    except ValueError as exc:
        raise LspClientError("Invalid LSP message payload") from exc
    if not isinstance(message, dict):
        raise LspClientError("Invalid LSP message payload")
    return message


def _folder_uri(folder: WorkspaceFolder) -> str:
    return Path(folder.root_path).absolute().as_uri()


class LanguageClient:
    """JSON-RPC client for a language server spoken to over stdio.

    ``start()`` spawns the server and completes the initialize handshake;
    ``stop()`` runs the shutdown/exit sequence and always reaps the process.
    """

    def __init__(
        self,
        server_options: ServerOptions,
        client_options: ClientOptions,
        *,
        client_id: str = CLIENT_ID,
        name: str = CLIENT_NAME,
        process_factory: ProcessFactory = asyncio.create_subprocess_exec,
    ) -> None:
        self.server_options = server_options
        self.client_options = client_options
        self.client_id = client_id
        self.name = name
        self._process_factory = process_factory
        self._process: Any = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._pending: dict[int, asyncio.Future[JSONValue]] = {}
        self._ids = itertools.count(1)
        self._closed: LspClientError | None = None
        self.server_capabilities: JSONObject = {}

    @property
    def executable(self) -> Executable:
        if self.client_options.debug:
            return self.server_options.debug
        return self.server_options.run

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> JSONObject:
        executable = self.executable
        output = self.client_options.output_log
        output.info("Launching %s", " ".join(executable.argv()))
        try:
            self._process = await self._process_factory(
                executable.command,
                *executable.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(executable.env),
            )
        except OSError as exc:
            raise LaunchFailure(
                f"Launching server using command {executable.command} failed: {_describe(exc)}"
            ) from exc
        self._closed = None
        self._reader_task = asyncio.ensure_future(self._read_loop(self._process.stdout))
        if self._process.stderr is not None:
            self._stderr_task = asyncio.ensure_future(self._pump_stderr(self._process.stderr))
        timeout = self.client_options.handshake_timeout
        try:
            return await self._handshake(timeout)
        except asyncio.TimeoutError as exc:
            await self._terminate()
            raise HandshakeFailure(
                f"Server did not answer initialize within {timeout:g}s"
            ) from exc
        except LspClientError as exc:
            await self._terminate()
            raise HandshakeFailure(f"Server initialization failed: {_describe(exc)}") from exc
        except BaseException:
            await self._terminate()
            raise

    async def _handshake(self, timeout: float) -> JSONObject:
        result = await asyncio.wait_for(
            self.request("initialize", self._initialize_params()),
            timeout=timeout,
        )
        initialize_result = result if isinstance(result, dict) else {}
        capabilities = initialize_result.get("capabilities")
        self.server_capabilities = capabilities if isinstance(capabilities, dict) else {}
        await self.notify("initialized", {})
        return initialize_result

    async def stop(self) -> None:
        process = self._process
        if process is None:
            return
        timeout = self.client_options.shutdown_timeout
        failure: BaseException | None = None
        try:
            if process.returncode is not None:
                raise LspClientError(
                    f"LSP server exited before shutdown (exit {process.returncode})"
                )
            await asyncio.wait_for(self.request("shutdown", None), timeout=timeout)
            await self.notify("exit", None)
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except (LspClientError, asyncio.TimeoutError) as exc:
            failure = exc
        finally:
            await self._terminate()
        if failure is not None:
            raise ShutdownFailure(
                f"Language server shutdown failed: {_describe(failure)}"
            ) from failure

    async def request(self, method: str, params: JSONValue) -> JSONValue:
        if self._closed is not None:
            raise LspClientError(str(self._closed))
        request_id = next(self._ids)
        future: asyncio.Future[JSONValue] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send(self._message(method, params, request_id=request_id))
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: JSONValue) -> None:
        await self._send(self._message(method, params))

    async def did_change_watched_files(self, events: Sequence[FileEvent]) -> None:
        if not events:
            return
        await self.notify(
            "workspace/didChangeWatchedFiles",
            {"changes": [event.as_params() for event in events]},
        )

    @staticmethod
    def _message(method: str, params: JSONValue, *, request_id: int | None = None) -> JSONObject:
        message: JSONObject = {"jsonrpc": "2.0"}
        if request_id is not None:
            message["id"] = request_id
        message["method"] = method
        if params is not None:
            message["params"] = params
        return message

    async def _send(self, message: JSONObject) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise LspClientError("LSP server is not running")
        self.client_options.trace_log.debug("Sending %s", json.dumps(message))
        try:
            process.stdin.write(_encode_rpc(message))
            await process.stdin.drain()
        except OSError as exc:
            raise LspClientError(f"LSP stream closed: {_describe(exc)}") from exc

    def _initialize_params(self) -> JSONObject:
        folders = self.client_options.workspace_folders
        root = folders[0] if folders else None
        return {
            "processId": os.getpid(),
            "clientInfo": {"name": self.name},
            "rootPath": root.root_path if root is not None else None,
            "rootUri": _folder_uri(root) if root is not None else None,
            "workspaceFolders": (
                [{"uri": _folder_uri(folder), "name": folder.name} for folder in folders]
                if folders
                else None
            ),
            "capabilities": {
                "workspace": {
                    "configuration": True,
                    "didChangeWatchedFiles": {"dynamicRegistration": False},
                },
            },
            "trace": "verbose" if self.client_options.debug else "off",
        }

    async def _read_loop(self, stream: asyncio.StreamReader) -> None:
        try:
            while True:
                message = await _read_rpc(stream)
                await self._dispatch(message)
        except LspClientError as exc:
            self._close_pending(exc)
        except asyncio.CancelledError:
            self._close_pending(LspClientError("LSP client stopped"))
            raise

    def _close_pending(self, exc: LspClientError) -> None:
        self._closed = exc
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)

    async def _dispatch(self, message: JSONObject) -> None:
        self.client_options.trace_log.debug("Received %s", json.dumps(message))
        method = message.get("method")
        if not isinstance(method, str):
            self._resolve(message)
            return
        if "id" in message:
            await self._answer(message, method)
            return
        self._on_notification(method, message.get("params"))

    def _resolve(self, message: JSONObject) -> None:
        request_id = message.get("id")
        if not isinstance(request_id, int):
            return
        future = self._pending.get(request_id)
        if future is None or future.done():
            return
        error = message.get("error")
        if error:
            future.set_exception(LspClientError(f"LSP error: {error}"))
            return
        future.set_result(message.get("result"))

    async def _answer(self, message: JSONObject, method: str) -> None:
        response: JSONObject = {"jsonrpc": "2.0", "id": message["id"]}
        params = message.get("params")
        if method == "workspace/configuration":
            items = params.get("items") if isinstance(params, dict) else None
            response["result"] = [None for _ in items] if isinstance(items, list) else []
        elif method in _NULL_RESULT_REQUESTS:
            response["result"] = None
        else:
            response["error"] = {
                "code": _METHOD_NOT_FOUND,
                "message": f"Unhandled method {method}",
            }
        await self._send(response)

    def _on_notification(self, method: str, params: JSONValue) -> None:
        if method in ("window/logMessage", "window/showMessage") and isinstance(params, dict):
            raw_type = params.get("type")
            level = _LOG_MESSAGE_LEVELS.get(raw_type if isinstance(raw_type, int) else 3, logging.INFO)
            self.client_options.output_log.log(level, "%s", params.get("message", ""))
            return
        self.client_options.trace_log.debug("Unhandled notification %s", method)

    async def _pump_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                continue
            if not line:
                return
            self.client_options.output_log.info(
                "%s", line.decode("utf-8", errors="replace").rstrip()
            )

    async def _terminate(self) -> None:
        process, self._process = self._process, None
        if process is not None:
            if process.stdin is not None:
                process.stdin.close()
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
        tasks = [task for task in (self._reader_task, self._stderr_task) if task is not None]
        self._reader_task = None
        self._stderr_task = None
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
