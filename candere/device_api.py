"""Device control-plane API: add, refresh, list and remove camera records.

Every endpoint answers with the envelope built by
:func:`candere.device_codec.wrap_envelope`. Add and refresh contact the camera
over ONVIF before anything is written, so a record only reaches the store once
discovery has fully succeeded.
"""

import logging
from typing import Any, Dict, Tuple

import sentry_sdk
from flask import Flask, Response, jsonify, request

from .device_codec import (
    OPERATION_DELETE,
    OPERATION_INSERT,
    REQUEST_FIELDS,
    DeviceDecodeError,
    decode_request_payload,
    deserialize_device,
    device_item_payload,
    device_list_payload,
    read_device_id,
    serialize_device,
    validate_string_fields,
    wrap_envelope,
)
from .device_store import DeviceStore, DeviceStoreError
from .onvif_discovery import OnvifDiscoveryClient
from .structured_logging import log_error, log_event


logger = logging.getLogger(__name__)

DATABASE_ERROR_BODY = "database error"


class RequestBodyError(ValueError):
    """Raised when a write endpoint receives no request body at all."""


def _plain_text(body: str, status_code: int) -> Response:
    return Response(body, status=status_code, mimetype="text/plain")


def _read_request_body() -> str:
    """Return the raw JSON text of the request.

    The UI posts the device as the value of a single form field; an uploaded
    file or a plain JSON body are accepted as well.

    Raises:
        RequestBodyError: If the request carries no content.
    """
    # Cached so form parsing below can still read the stream.
    raw = request.get_data(cache=True, as_text=True)
    if raw.lstrip().startswith("{"):
        return raw
    for value in request.form.values():
        if value.strip():
            return value
    for upload in request.files.values():
        return upload.read().decode("utf-8", errors="replace")
    if not raw.strip():
        message = "missing request body"
        raise RequestBodyError(message)
    return raw


def _decode_request(require_id: bool = False) -> Dict[str, Any]:
    """Decode and validate the fields a UI must send before discovery runs.

    Raises:
        RequestBodyError: If the body is missing.
        DeviceDecodeError: If the body is not a JSON object or a field is invalid.
    """
    payload = decode_request_payload(_read_request_body())
    validate_string_fields(payload, REQUEST_FIELDS)
    device_id = read_device_id(payload)
    if require_id and device_id == 0:
        message = "id is required"
        raise DeviceDecodeError(message)
    return payload


def _discovery_failed_response() -> Tuple[Response, int]:
    return jsonify(wrap_envelope({"success": False})), 200


def register_device_routes(
    app: Flask,
    store: DeviceStore,
    discovery_client: OnvifDiscoveryClient,
) -> None:
    """Register the device endpoints and their error handlers on a Flask app.

    Routes:
    - ``/devices/fetch`` (GET, POST): list all devices.
    - ``/devices/add`` (POST): discover and insert a device.
    - ``/devices/refresh`` (POST): re-discover and overwrite a device.
    - ``/devices/remove`` (POST): delete a device by id.

    Any other path answers 404 ``not found <path>`` in plain text; a storage
    fault on any route answers 500 ``database error``.

    Args:
        app: Flask application instance.
        store: Device persistence backend.
        discovery_client: ONVIF discovery client used by add and refresh.
    """

    @app.errorhandler(DeviceStoreError)
    def _handle_store_error(exc: DeviceStoreError):
        log_error(
            str(request.endpoint or request.path),
            "database_error",
            str(exc),
            path=request.path,
        )
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("component", "device_store")
            scope.capture_exception(exc)
        return _plain_text(DATABASE_ERROR_BODY, 500)

    @app.errorhandler(RequestBodyError)
    def _handle_missing_body(exc: RequestBodyError):
        log_error(str(request.endpoint), "bad_request", str(exc), severity="WARNING")
        return _plain_text(str(exc), 400)

    @app.errorhandler(DeviceDecodeError)
    def _handle_decode_error(exc: DeviceDecodeError):
        log_error(str(request.endpoint), "bad_request", str(exc), severity="WARNING")
        return _plain_text(f"invalid device payload: {exc}", 400)

    @app.errorhandler(404)
    def _handle_not_found(_exc):
        return _plain_text(f"not found {request.path}", 404)

    @app.route("/devices/fetch", methods=["GET", "POST"])
    def fetch_devices():
        """List all stored devices as a ``=`` payload."""
        devices = store.fetch_all()
        return jsonify(wrap_envelope(None, [("devices", device_list_payload(devices))])), 200

    @app.route("/devices/add", methods=["POST"])
    def add_device():
        """Discover a camera and store it as a new device.

        Returns:
            ``+`` payload with the stored device, or ``{"success": false}`` when
            the camera cannot be reached or queried.
        """
        payload = _decode_request()
        result = discovery_client.discover(
            payload["address"], payload["username"], payload["password"]
        )
        if not result.succeeded:
            log_event(
                "device_discovery_failed",
                "WARNING",
                route="add",
                address=payload["address"],
                phase=result.failed_phase.name.lower() if result.failed_phase else None,
            )
            return _discovery_failed_response()

        device = deserialize_device({**payload, **result.as_wire_fields()})
        store.insert(device)
        log_event("device_added", device_id=device.id, manufacturer=device.manufacturer)

        item = device_item_payload(OPERATION_INSERT, serialize_device(device))
        return jsonify(wrap_envelope({"success": True}, [("devices", item)])), 200

    @app.route("/devices/refresh", methods=["POST"])
    def refresh_device():
        """Re-run discovery for an existing device and overwrite its record.

        The camera is always queried again, even though only the metadata can
        have changed. Answers with the full device list.
        """
        payload = _decode_request(require_id=True)
        result = discovery_client.discover(
            payload["address"], payload["username"], payload["password"]
        )
        if not result.succeeded:
            log_event(
                "device_discovery_failed",
                "WARNING",
                route="refresh",
                device_id=payload["id"],
                address=payload["address"],
                phase=result.failed_phase.name.lower() if result.failed_phase else None,
            )
            return _discovery_failed_response()

        device = deserialize_device({**payload, **result.as_wire_fields()})
        updated = store.update(device)
        log_event("device_refreshed", device_id=device.id, updated=updated)

        devices = store.fetch_all()
        return jsonify(
            wrap_envelope({"success": True}, [("devices", device_list_payload(devices))])
        ), 200

    @app.route("/devices/remove", methods=["POST"])
    def remove_device():
        """Delete a device by id and echo the decoded request body.

        Removing an unknown id is not an error.
        """
        payload = decode_request_payload(_read_request_body())
        if read_device_id(payload) == 0:
            message = "id is required"
            raise DeviceDecodeError(message)
        device = deserialize_device(payload)
        deleted = store.delete(device)
        log_event("device_removed", device_id=device.id, deleted=deleted)

        # The UI removes its entry by the object it sent, extra keys included.
        item = device_item_payload(OPERATION_DELETE, payload)
        return jsonify(wrap_envelope({"success": True}, [("devices", item)])), 200
