"""
Rendering of gateway results into HTTP responses.
"""

from typing import Any, Dict, Mapping, Optional, Union

from starlette.responses import JSONResponse, Response

from ..models import AdmissionFailure, AdmissionSuccess

RATE_LIMIT_HEADERS_KEY = "_rateLimitHeaders"


def render_response(result: Union[AdmissionSuccess, AdmissionFailure, Mapping[str, Any]],
                    additional_headers: Optional[Mapping[str, str]] = None) -> Response:
    """Turn a gateway result into a JSON response.

    Without an explicit status, results carrying ``error`` render as 400 and
    everything else as 200. Caller headers override the rate-limit headers.
    """
    if isinstance(result, (AdmissionSuccess, AdmissionFailure)):
        payload = result.to_dict()
    else:
        payload = dict(result or {})

    rate_limit_headers = payload.pop(RATE_LIMIT_HEADERS_KEY, None) or {}
    status = payload.pop("status", None)

    if payload.get("error") is not None:
        status = status or 400
        payload.pop("data", None)
    else:
        status = status or 200

    headers: Dict[str, str] = {"Content-Type": "application/json"}
    headers.update(rate_limit_headers)
    headers.update(additional_headers or {})

    if status == 204:
        headers.pop("Content-Type", None)
        return Response(status_code=204, headers=headers)
    return JSONResponse(content=payload, status_code=status, headers=headers)
