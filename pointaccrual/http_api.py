"""HTTP interface: upload purchase files, accrue points, return the summaries."""

from __future__ import annotations

import io
import json
import logging
import re
import warnings
import zipfile
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from flask import Flask, Response, request

from .config import Config
from .errors import INTERNAL, INVALID_ARGUMENT, AppError, get_code
from .models import FileInput

logger = logging.getLogger(__name__)

UPLOAD_ROUTE = "/api/v1/point/accumulate/upload"
CSV_EXTENSION = ".csv"
CSV_CONTENT_TYPE = "text/csv"
CSV_KEY = "csv_files"

_DATE_FORMAT = "%Y-%m-%d"
_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)

_STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "INVALID_ARGUMENT": 400,
    "UNAUTHENTICATED": 401,
}


class _PointService(Protocol):
    def execute_multiple_files(self, files: Sequence[FileInput]) -> None: ...


def error_status(code: str) -> int:
    """Return the HTTP status for an application error code."""
    return _STATUS_BY_CODE.get(code, 500)


def _json_response(payload: dict[str, Any], status: int) -> Response:
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return Response(body, status=status, mimetype="application/json")


def error_response(err: BaseException) -> Response:
    """Return a JSON error response whose status follows the error's code."""
    code = get_code(err)
    return _json_response({"error_code": code, "message": str(err)}, error_status(code))


def _extension(filename: str) -> str:
    name = filename.rsplit("/", 1)[-1]
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def validate_file_type(filename: str, content_type: str) -> None:
    """Raise an AppError unless the upload is a .csv file sent as text/csv."""
    if _extension(filename) != CSV_EXTENSION:
        raise INVALID_ARGUMENT.with_message("Invalid file type")
    if content_type != CSV_CONTENT_TYPE:
        raise INVALID_ARGUMENT.with_message("Invalid content type")


def parse_date_from_filename(filename: str) -> datetime:
    """Return the first YYYY-MM-DD date in ``filename`` as a UTC midnight."""
    match = _DATE_PATTERN.search(filename)
    if match is None:
        cause = ValueError(f"date in YYYY-MM-DD format not found in filename: {filename}")
        raise INVALID_ARGUMENT.wrap(cause)
    return datetime.strptime(match.group(), _DATE_FORMAT).replace(tzinfo=timezone.utc)


def add_file_to_zip(zip_file: zipfile.ZipFile, file_path: str | Path, file_name: str) -> None:
    """Store the file at ``file_path`` in ``zip_file`` under ``file_name``."""
    with open(file_path, "rb") as source, zip_file.open(file_name, "w") as target:
        while chunk := source.read(64 * 1024):
            target.write(chunk)


def _summary_archive(inputs: Sequence[FileInput], file_path: str) -> bytes:
    buffer = io.BytesIO()
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for item in inputs:
                date = item.purchased_date.strftime(_DATE_FORMAT)
                path = Path(file_path % date)
                if not path.exists():
                    continue
                try:
                    add_file_to_zip(archive, path, f"point-summary_{date}.csv")
                except OSError as exc:
                    raise INTERNAL.wrap(exc) from exc
    return buffer.getvalue()


def _handle_upload(service: _PointService, config: Config) -> Response:
    if request.mimetype != "multipart/form-data":
        cause = ValueError("request Content-Type isn't multipart/form-data")
        return error_response(INVALID_ARGUMENT.wrap(cause))

    uploads = sorted(request.files.getlist(CSV_KEY), key=lambda upload: upload.filename or "")
    if not uploads:
        return error_response(INVALID_ARGUMENT.with_message("no files uploaded"))

    inputs = []
    for upload in uploads:
        filename = upload.filename or ""
        try:
            validate_file_type(filename, upload.content_type or "")
            reader = io.BytesIO(upload.read())
            purchased_date = parse_date_from_filename(filename)
        except Exception as exc:  # every failure becomes an error response
            return error_response(exc)
        inputs.append(FileInput(purchased_date=purchased_date, reader=reader))

    try:
        service.execute_multiple_files(inputs)
    except Exception as exc:  # every failure becomes an error response
        logger.warning("point accrual failed: %s", exc)
        return error_response(exc)

    try:
        archive = _summary_archive(inputs, config.file_path)
    except (AppError, OSError, TypeError, ValueError) as exc:
        logger.error("failed to create zip: %s", exc)
        return _json_response({"error": "Failed to create zip"}, 500)

    status = json.dumps({"status": "ok"}, separators=(",", ":")).encode()
    return Response(archive + status, status=200, mimetype="application/octet-stream")


def create_app(service: _PointService, config: Config) -> Flask:
    """Build the WSGI application serving the upload endpoint.

    A successful upload answers with a zip archive of the summary files for the
    uploaded dates, followed by the JSON status object.
    """
    app = Flask(__name__)

    @app.post(UPLOAD_ROUTE)
    def upload_csv() -> Response:
        return _handle_upload(service, config)

    return app