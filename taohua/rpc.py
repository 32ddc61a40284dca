"""
Request Router — JSON-RPC 2.0 dispatch over the journal service.

The UI speaks camelCase (``createEntry``, ``emotionTags``); the core speaks
snake_case. The wire adapter functions below are the only place the two
vocabularies meet. Handlers are synchronous: the service is in-process and
does no network I/O.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel, to_snake

from taohua.errors import ErrorKind, InvalidRequestError
from taohua.journal.models import Attachment, EntryPatch, MemoryEntry, MemoryStats, SearchFilter
from taohua.result import Err, Result
from taohua.service import JournalService

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# JSON-RPC 2.0 helpers
# ---------------------------------------------------------------------------


def make_response(req_id: str | int | None, result: Any) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 success response."""
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def make_error(
    req_id: str | int | None,
    code: int,
    message: str,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 error response."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": req_id, "error": error}


# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Application error codes, one per ErrorKind
ERROR_CODES: dict[ErrorKind, int] = {
    ErrorKind.WEAK_PASSWORD: -32001,
    ErrorKind.NOT_AUTHENTICATED: -32002,
    ErrorKind.AUTHENTICATION_FAILED: -32003,
    ErrorKind.NOT_FOUND: -32004,
    ErrorKind.STORAGE_IO_FAILURE: -32005,
    ErrorKind.CORRUPT_RECORD: -32006,
    ErrorKind.PASSWORD_ALREADY_SET: -32007,
    ErrorKind.INVALID_REQUEST: INVALID_PARAMS,
    ErrorKind.INTERNAL: INTERNAL_ERROR,
}


def error_from(req_id: str | int | None, err: Err) -> dict[str, Any]:
    data = {"detail": err.detail} if err.detail else None
    return make_error(req_id, ERROR_CODES.get(err.kind, INTERNAL_ERROR), err.kind.value, data)


# ---------------------------------------------------------------------------
# Wire adapter (camelCase <-> snake_case)
# ---------------------------------------------------------------------------


def camelize(value: Any) -> Any:
    """Recursively rename dict keys to camelCase."""
    if isinstance(value, dict):
        return {to_camel(str(k)): camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [camelize(v) for v in value]
    return value


def snakeify(value: Any) -> Any:
    """Recursively rename dict keys to snake_case."""
    if isinstance(value, dict):
        return {to_snake(str(k)): snakeify(v) for k, v in value.items()}
    if isinstance(value, list):
        return [snakeify(v) for v in value]
    return value


def model_to_wire(model: BaseModel) -> dict[str, Any]:
    return camelize(model.model_dump(mode="json"))


def entry_to_wire(entry: MemoryEntry) -> dict[str, Any]:
    return model_to_wire(entry)


def attachment_to_wire(attachment: Attachment) -> dict[str, Any]:
    return model_to_wire(attachment)


def stats_to_wire(stats: MemoryStats) -> dict[str, Any]:
    # Bucket keys are values (type names, months), not field names
    wire = model_to_wire(stats.model_copy(update={
        "entries_by_type": {}, "entries_by_emotion": {}, "entries_by_month": {},
    }))
    wire["entriesByType"] = dict(stats.entries_by_type)
    wire["entriesByEmotion"] = dict(stats.entries_by_emotion)
    wire["entriesByMonth"] = dict(stats.entries_by_month)
    return wire


def patch_from_wire(params: dict[str, Any]) -> EntryPatch:
    fields = snakeify({k: v for k, v in params.items() if k != "id"})
    if "is_encrypted" in fields and "encrypt" not in fields:
        fields["encrypt"] = fields.pop("is_encrypted")
    return EntryPatch.model_validate(fields)


def filter_from_wire(params: dict[str, Any]) -> SearchFilter:
    return SearchFilter.model_validate(snakeify(params))


def decode_data(value: Any, name: str = "data") -> bytes:
    if not isinstance(value, str):
        raise InvalidRequestError(f"{name} must be a base64 string")
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise InvalidRequestError(f"{name} is not valid base64") from e


def attachments_from_wire(items: Any) -> list[dict[str, Any]]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise InvalidRequestError("attachments must be a list")
    inputs = []
    for item in items:
        if not isinstance(item, dict):
            raise InvalidRequestError("each attachment must be an object")
        fields = snakeify(item)
        fields["data"] = decode_data(fields.get("data"))
        inputs.append(fields)
    return inputs


def _param(params: dict[str, Any], name: str, kind: type = str) -> Any:
    value = params.get(name)
    if not isinstance(value, kind) or (kind is str and not value):
        raise InvalidRequestError(f"missing or invalid parameter: {name}")
    return value


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class RequestRouter:
    """Transport-independent request router.

    ``dispatch`` takes an already-decoded method and params; ``handle``
    accepts a whole JSON-RPC request object; ``handle_text`` also does the
    JSON decoding, for line-oriented transports.
    """

    def __init__(self, service: JournalService) -> None:
        self._service = service

    def handle_text(self, text: str) -> dict[str, Any]:
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            return make_error(None, PARSE_ERROR, "parse error")
        return self.handle(message)

    def handle(self, message: Any) -> dict[str, Any]:
        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            return make_error(None, INVALID_REQUEST, "invalid request")
        params = message.get("params") or {}
        if not isinstance(params, dict):
            return make_error(message.get("id"), INVALID_PARAMS, "params must be an object")
        return self.dispatch(message["method"], params, message.get("id"))

    def dispatch(
        self,
        method: str,
        params: dict[str, Any],
        req_id: str | int | None,
    ) -> dict[str, Any]:
        """Route a request to the appropriate handler.

        Args:
            method: RPC method name (e.g., "createEntry", "getAllEntries").
            params: Method parameters, camelCase.
            req_id: Request ID for response correlation.

        Returns:
            JSON-RPC 2.0 response dict.
        """
        handler = self._handlers.get(method)
        if handler is None:
            return make_error(req_id, METHOD_NOT_FOUND, f"unknown method: {method}")
        try:
            return handler(self, params, req_id)
        except InvalidRequestError as e:
            return make_error(req_id, INVALID_PARAMS, ErrorKind.INVALID_REQUEST.value, {"detail": e.message})
        except ValidationError as e:
            detail = "; ".join(
                f"{'.'.join(str(p) for p in item['loc'])}: {item['msg']}"
                for item in e.errors(include_url=False, include_input=False)
            )
            return make_error(req_id, INVALID_PARAMS, ErrorKind.INVALID_REQUEST.value, {"detail": detail})
        except Exception as e:
            logger.error("rpc.dispatch_error", method=method, error=str(e), exc_info=True)
            return make_error(req_id, INTERNAL_ERROR, ErrorKind.INTERNAL.value)

    @staticmethod
    def _reply(
        req_id: str | int | None,
        result: Result[Any],
        render: Optional[Callable[[Any], Any]] = None,
    ) -> dict[str, Any]:
        if isinstance(result, Err):
            return error_from(req_id, result)
        value = result.value
        return make_response(req_id, render(value) if render else value)

    # ------------------------------------------------------------------
    # Session handlers
    # ------------------------------------------------------------------

    def _handle_ping(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        return make_response(req_id, {"status": "pong"})

    def _handle_has_master_password(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        return self._reply(req_id, self._service.has_master_password(), lambda v: {"hasMasterPassword": v})

    def _handle_set_master_password(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        password = _param(params, "password")
        return self._reply(req_id, self._service.set_master_password(password), lambda _: {"success": True})

    def _handle_verify_master_password(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        password = _param(params, "password")
        return self._reply(req_id, self._service.verify_master_password(password), lambda v: {"verified": v})

    def _handle_lock_session(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        return self._reply(req_id, self._service.lock_session(), lambda _: {"success": True})

    def _handle_is_authenticated(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        return self._reply(req_id, self._service.is_authenticated(), lambda v: {"authenticated": v})

    def _handle_change_password(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        old = _param(params, "oldPassword")
        new = _param(params, "newPassword")
        return self._reply(req_id, self._service.change_password(old, new), lambda _: {"success": True})

    # ------------------------------------------------------------------
    # Entry handlers
    # ------------------------------------------------------------------

    def _handle_create_entry(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        metadata = params.get("metadata")
        result = self._service.create_entry(
            title=_param(params, "title"),
            content=params.get("content", ""),
            type=params.get("type", "text"),
            emotion_tags=params.get("emotionTags") or [],
            encrypt=bool(params.get("encrypt", params.get("isEncrypted", False))),
            metadata=snakeify(metadata) if metadata is not None else None,
            attachments=attachments_from_wire(params.get("attachments")),
        )
        return self._reply(req_id, result, entry_to_wire)

    def _handle_update_entry(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        entry_id = _param(params, "id")
        patch = patch_from_wire(params)
        return self._reply(req_id, self._service.update_entry(entry_id, patch), entry_to_wire)

    def _handle_delete_entry(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        entry_id = _param(params, "id")
        return self._reply(req_id, self._service.delete_entry(entry_id), lambda _: {"success": True})

    def _handle_get_entry(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        entry_id = _param(params, "id")
        return self._reply(req_id, self._service.get_entry(entry_id), entry_to_wire)

    def _handle_get_all_entries(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        return self._reply(
            req_id,
            self._service.get_all_entries(),
            lambda entries: {"entries": [entry_to_wire(e) for e in entries]},
        )

    def _handle_get_random_entry(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        return self._reply(
            req_id,
            self._service.get_random_entry(),
            lambda entry: {"entry": entry_to_wire(entry) if entry is not None else None},
        )

    def _handle_search_entries(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        criteria = filter_from_wire(params.get("filter", params))
        return self._reply(
            req_id,
            self._service.search_entries(criteria),
            lambda entries: {"entries": [entry_to_wire(e) for e in entries]},
        )

    def _handle_get_stats(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        return self._reply(req_id, self._service.get_stats(), stats_to_wire)

    # ------------------------------------------------------------------
    # Attachment handlers
    # ------------------------------------------------------------------

    def _handle_add_attachment(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        result = self._service.add_attachment(
            _param(params, "entryId"),
            _param(params, "fileName"),
            decode_data(params.get("data")),
            params.get("fileType") or "application/octet-stream",
        )
        return self._reply(req_id, result, attachment_to_wire)

    def _handle_read_attachment(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        result = self._service.read_attachment(_param(params, "entryId"), _param(params, "attachmentId"))
        return self._reply(req_id, result, lambda data: {"data": base64.b64encode(data).decode("ascii")})

    def _handle_remove_attachment(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        result = self._service.remove_attachment(_param(params, "entryId"), _param(params, "attachmentId"))
        return self._reply(req_id, result, lambda _: {"success": True})

    # ------------------------------------------------------------------
    # Utility handlers
    # ------------------------------------------------------------------

    def _handle_backup(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        target = _param(params, "targetDir")
        return self._reply(req_id, self._service.backup(target), lambda path: {"path": str(path)})

    def _handle_password_strength(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        password = params.get("password", "")
        if not isinstance(password, str):
            raise InvalidRequestError("missing or invalid parameter: password")
        return self._reply(req_id, self._service.password_strength(password), lambda score: {"score": score})

    def _handle_generate_password(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        length = params.get("length", 16)
        if isinstance(length, bool) or not isinstance(length, int):
            raise InvalidRequestError("length must be an integer")
        return self._reply(req_id, self._service.generate_password(length), lambda pw: {"password": pw})

    # ------------------------------------------------------------------
    # Handler registry
    # ------------------------------------------------------------------

    _handlers: dict[str, Any] = {
        "ping": _handle_ping,
        "hasMasterPassword": _handle_has_master_password,
        "setMasterPassword": _handle_set_master_password,
        "verifyMasterPassword": _handle_verify_master_password,
        "lockSession": _handle_lock_session,
        "isAuthenticated": _handle_is_authenticated,
        "changePassword": _handle_change_password,
        "createEntry": _handle_create_entry,
        "updateEntry": _handle_update_entry,
        "deleteEntry": _handle_delete_entry,
        "getEntry": _handle_get_entry,
        "getAllEntries": _handle_get_all_entries,
        "getRandomEntry": _handle_get_random_entry,
        "searchEntries": _handle_search_entries,
        "getStats": _handle_get_stats,
        "addAttachment": _handle_add_attachment,
        "readAttachment": _handle_read_attachment,
        "removeAttachment": _handle_remove_attachment,
        "backup": _handle_backup,
        "passwordStrength": _handle_password_strength,
        "generatePassword": _handle_generate_password,
    }
