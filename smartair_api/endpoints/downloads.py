"""Respuestas de descarga de archivos JSON."""

from __future__ import annotations

import json
from typing import Any

from fastapi import Response
from fastapi.encoders import jsonable_encoder

from ..ngsi import utcnow


def attachment_name(prefix: str, *parts: str) -> str:
    stamp = utcnow().strftime("%Y%m%d_%H%M%S")
    name = "_".join([prefix, *[p for p in parts if p], stamp])
    return f"{name}.json"


def json_attachment(data: Any, filename: str) -> Response:
    body = json.dumps(jsonable_encoder(data), ensure_ascii=False, indent=2)
    return Response(
        content=body.encode("utf-8"),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
